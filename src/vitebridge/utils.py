import logging
import time

from rich.console import Console
from rich.markup import escape
from typing_extensions import override

# Configure console to handle encoding errors gracefully on Windows
# Use legacy_windows=False to enable modern Windows console APIs that support UTF-8
console = Console(legacy_windows=False)


def format_elapsed_ms(start_time_perf: float) -> str:
    """Format elapsed time since start_time_perf.

    If under 1 second, return milliseconds. Otherwise, return seconds and remaining milliseconds.
    """
    elapsed_seconds = time.perf_counter() - start_time_perf
    if elapsed_seconds < 1:
        return f"{int(elapsed_seconds * 1000)}ms"
    seconds = int(elapsed_seconds)
    remaining_ms = int((elapsed_seconds - seconds) * 1000)
    return f"{seconds}s {remaining_ms}ms"


def print_with_prefix(prefix: str, text: str, color: str, width: int = 10):
    """Print text with a colored prefix.

    Args:
        prefix: The prefix text to display
        text: The main text to display
        color: The color for the prefix
        width: The width to pad the prefix to (default: 10)
    """
    current_time = time.time()
    timestamp = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(current_time))
    milliseconds = int((current_time % 1) * 1000)
    timestamp_with_ms = f"{timestamp}.{milliseconds:03d}"

    padded_prefix = escape(prefix).ljust(width)

    # Multi-line messages (tracebacks) get the prefix on every line
    for line in text.split("\n"):
        console.print(
            f"{timestamp_with_ms} | [{color}]{padded_prefix}[/] | {escape(line)}",
            highlight=False,
        )


class PrefixedLogHandler(logging.Handler):
    """A logging handler that uses print_with_prefix to output log messages."""

    def __init__(self, prefix: str, color: str, width: int = 10):
        super().__init__()
        self.prefix: str = prefix
        self.color: str = color
        self.width: int = width

    @override
    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
            color = self.color
            if record.levelno >= logging.ERROR:
                color = "red"
            elif record.levelno >= logging.WARNING:
                color = "yellow"

            print_with_prefix(self.prefix, msg, color, width=self.width)
        except Exception:
            self.handleError(record)
