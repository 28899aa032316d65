"""Run a Vite dev server next to an ASGI backend and proxy frontend traffic to it."""

__version__ = "0.1.0"
