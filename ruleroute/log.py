"""
ruleroute.log — stderr diagnostics and the per-turn log file.

Hooks talk to the host over stdout, so every diagnostic goes to stderr with a
``[ruleroute]`` prefix. Debug lines only appear when RULEROUTE_DEBUG is set;
warnings always appear.
"""
import io
import os
import sys
from datetime import datetime
from pathlib import Path

PREFIX = "[ruleroute]"

# Log file rotation
LOG_MAX_SIZE_BYTES = 50_000        # Rotate log when it exceeds this size
LOG_KEEP_SIZE_BYTES = 25_000       # Keep this many bytes after rotation


def debug_enabled() -> bool:
    return bool(os.environ.get("RULEROUTE_DEBUG"))


def debug(message: str) -> None:
    """Print a debug line to stderr when RULEROUTE_DEBUG is set."""
    if debug_enabled():
        print(f"{PREFIX} {message}", file=sys.stderr)


def warn(message: str) -> None:
    print(f"{PREFIX} WARN:{message}", file=sys.stderr)


def windows_utf8_io():
    """Fix Windows cp1252 encoding for stdout/stderr. Call once at script top."""
    if sys.stdout.encoding and sys.stdout.encoding.lower() != 'utf-8' and hasattr(sys.stdout, "buffer"):
        sys.stdout = io.TextIOWrapper(sys.stdout.buffer, encoding='utf-8', errors='replace')
    if sys.stderr.encoding and sys.stderr.encoding.lower() != 'utf-8' and hasattr(sys.stderr, "buffer"):
        sys.stderr = io.TextIOWrapper(sys.stderr.buffer, encoding='utf-8', errors='replace')


def append_log_line(log_file: Path, line: str) -> None:
    """Append one timestamped line to log_file, rotating it by size first."""
    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        if log_file.exists() and log_file.stat().st_size > LOG_MAX_SIZE_BYTES:
            content = log_file.read_text(encoding='utf-8', errors='replace')
            log_file.write_text(content[-LOG_KEEP_SIZE_BYTES:], encoding='utf-8')

        with open(log_file, "a", encoding='utf-8') as f:
            f.write(f"[{datetime.now().isoformat()[:19]}] {line}\n")
    except OSError:
        pass  # Never fail the hook on a log write
