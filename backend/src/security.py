"""Path validation gates and PII stripping for the kaleidoscope CLI."""

import os
import re
from pathlib import Path

# Input validation
MAX_INPUT_SIZE = 100 * 1024 * 1024  # 100 MB
ALLOWED_EXTENSIONS = {".jpg", ".jpeg"}
ALLOWED_OUTPUT_EXTENSIONS = {".jpg", ".jpeg"}

# Chain depth cap
MAX_CHAIN_DEPTH = 10

# Output must never land in OS-owned trees (Linux and macOS)
BLOCKED_OUTPUT_PREFIXES = (
    "/bin",
    "/boot",
    "/dev",
    "/etc",
    "/lib",
    "/proc",
    "/sbin",
    "/sys",
    "/usr",
    "/System",
    "/Library",
    "/private/etc",
    "/private/var",
)


def _unsafe_name(name: str) -> bool:
    return ".." in name or "/" in name or "\\" in name or "\x00" in name


def _blocked_prefix(resolved: str) -> str | None:
    """The system prefix ``resolved`` sits under, matched on whole path components."""
    for prefix in BLOCKED_OUTPUT_PREFIXES:
        if resolved == prefix or resolved.startswith(prefix + "/"):
            return prefix
    return None


def validate_input_path(path: str) -> list[str]:
    """Validate an input image path. Returns list of errors (empty = valid).

    Checks:
    - File exists
    - Not a symlink
    - Extension in whitelist
    - File is non-empty and <= MAX_INPUT_SIZE
    - Filename is safe (no path traversal)
    """
    errors: list[str] = []
    p = Path(path)

    if not p.exists():
        errors.append(f"File not found: {path}")
        return errors

    if p.is_symlink():
        errors.append("Symlinks are not allowed")
        return errors

    if not p.is_file():
        errors.append(f"Not a regular file: {path}")
        return errors

    ext = p.suffix.lower()
    if ext not in ALLOWED_EXTENSIONS:
        errors.append(
            f"Extension '{ext}' not allowed. Allowed: {sorted(ALLOWED_EXTENSIONS)}"
        )

    size = p.stat().st_size
    if size == 0:
        errors.append(f"File is empty: {p.name}")
    elif size > MAX_INPUT_SIZE:
        size_mb = size / (1024 * 1024)
        errors.append(
            f"File too large: {size_mb:.1f} MB (max {MAX_INPUT_SIZE // (1024 * 1024)} MB)"
        )

    if _unsafe_name(p.name):
        errors.append(f"Unsafe filename: {p.name}")

    return errors


def validate_output_path(path: str) -> list[str]:
    """Validate an output image path. Returns list of errors (empty = valid).

    Checks:
    - Path is absolute
    - Not a system directory
    - Extension in whitelist
    - Parent directory exists and is writable
    - Filename is safe (no traversal)
    """
    errors: list[str] = []
    p = Path(path)

    if not p.is_absolute():
        errors.append("Output path must be absolute")
        return errors

    blocked = _blocked_prefix(str(p.resolve()))
    if blocked:
        errors.append(f"Cannot write to system directory: {blocked}")
        return errors

    ext = p.suffix.lower()
    if ext not in ALLOWED_OUTPUT_EXTENSIONS:
        errors.append(f"Output extension '{ext}' not allowed.")

    parent = p.parent
    if not parent.exists():
        errors.append(f"Output directory does not exist: {parent}")
    elif not os.access(str(parent), os.W_OK):
        errors.append(f"Output directory is not writable: {parent}")

    if _unsafe_name(p.name):
        errors.append(f"Unsafe output filename: {p.name}")

    return errors


def validate_chain_depth(chain: list) -> list[str]:
    """Validate chain depth against MAX_CHAIN_DEPTH. Returns list of errors."""
    errors: list[str] = []
    if len(chain) > MAX_CHAIN_DEPTH:
        errors.append(f"Chain depth {len(chain)} exceeds maximum {MAX_CHAIN_DEPTH}")
    return errors


# --- PII stripping for Sentry events and crash dumps ---

_HOME = os.path.expanduser("~")
_USER_PATH = re.compile(r'/Users/[^/\s"]+|/home/[^/\s"]+|[A-Za-z]:\\+Users\\+[^\\\s"]+')
_SENSITIVE_KEYS = ("token", "auth", "key", "secret", "password", "dsn", "cookie")


def _redact_text(text: str) -> str:
    if _HOME and _HOME != "/":
        text = text.replace(_HOME, "<HOME>")
    return _USER_PATH.sub("<REDACTED_PATH>", text)


def _scrub(value):
    """Recursively redact user paths in strings and values under sensitive keys."""
    if isinstance(value, str):
        return _redact_text(value)
    if isinstance(value, dict):
        return {
            k: "<REDACTED>"
            if isinstance(k, str) and any(s in k.lower() for s in _SENSITIVE_KEYS)
            else _scrub(v)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [_scrub(v) for v in value]
    return value


def strip_pii(event: dict, hint: dict) -> dict:
    """Sentry before_send hook; also sanitizes crash dumps.

    Image paths in messages, tracebacks and breadcrumbs are rewritten so no
    user name or home directory leaves the machine. Values under keys that
    look like credentials are replaced wholesale.
    """
    return _scrub(event)
