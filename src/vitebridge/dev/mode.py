"""Development vs. production mode, derived from the active runtime profiles."""

from __future__ import annotations

import os
from collections.abc import Iterable, Mapping

from vitebridge.constants import (
    DEVELOPMENT_PROFILES,
    PRODUCTION_PROFILES,
    PROFILES_ENV_VAR,
)


def parse_profiles(value: str | None) -> frozenset[str]:
    """Parse a comma-separated profile list ("dev, local" -> {"dev", "local"})."""
    if not value:
        return frozenset()
    return frozenset(p.strip() for p in value.split(",") if p.strip())


def is_development_mode(profiles: Iterable[str]) -> bool:
    """Development is the default when no profile is active."""
    active = frozenset(profiles)
    return not active or not active.isdisjoint(DEVELOPMENT_PROFILES)


def is_production_mode(profiles: Iterable[str]) -> bool:
    return not frozenset(profiles).isdisjoint(PRODUCTION_PROFILES)


class ModeDetector:
    """Answers "are we in development?" for a fixed set of active profiles."""

    def __init__(self, profiles: Iterable[str] = ()) -> None:
        self.profiles: frozenset[str] = frozenset(profiles)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ModeDetector:
        """Read active profiles from VITEBRIDGE_PROFILES_ACTIVE."""
        env = os.environ if environ is None else environ
        return cls(parse_profiles(env.get(PROFILES_ENV_VAR)))

    @property
    def is_development(self) -> bool:
        return is_development_mode(self.profiles)

    @property
    def is_production(self) -> bool:
        return is_production_mode(self.profiles)
