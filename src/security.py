"""Validation gates and PII scrubbing for dithercam.

Every path that reaches the filesystem from the command line, the
environment or the remote control channel goes through one of these
checks first. Validators return a list of error strings; empty means valid.
"""

import json
import os
import re
from pathlib import Path

# --- Sources ---

VIDEO_EXTENSIONS = {".mp4", ".mov", ".avi", ".mkv", ".webm", ".m4v"}
IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".bmp", ".gif", ".webp", ".tif", ".tiff"}
MAX_SOURCE_FILE_BYTES = 4 * 1024 * 1024 * 1024  # 4 GB

# --- Captures ---

ALLOWED_CAPTURE_FORMATS = {"PNG": ".png", "JPEG": ".jpg", "WEBP": ".webp"}

BLOCKED_OUTPUT_PREFIXES = (
    "/System",
    "/Library",
    "/usr",
    "/bin",
    "/sbin",
    "/etc",
    "/private/var",
    "/private/etc",
)

# Remote control messages larger than this are rejected by the socket
MAX_CONTROL_MESSAGE_BYTES = 4096


def validate_source_file(path: str) -> list[str]:
    """Check a video or image file before it is opened as a frame source."""
    p = Path(path)
    if not p.exists():
        return [f"Source file not found: {p.name}"]
    if not p.is_file():
        return [f"Source is not a regular file: {p.name}"]

    errors: list[str] = []
    ext = p.suffix.lower()
    if ext not in VIDEO_EXTENSIONS | IMAGE_EXTENSIONS:
        errors.append(f"Unsupported source type '{ext}'")

    size = p.stat().st_size
    if size > MAX_SOURCE_FILE_BYTES:
        errors.append(
            f"Source file too large: {size / (1024 ** 3):.1f} GB "
            f"(max {MAX_SOURCE_FILE_BYTES // 1024 ** 3} GB)"
        )
    return errors


def _blocked_prefix(resolved: str) -> str | None:
    for prefix in BLOCKED_OUTPUT_PREFIXES:
        if resolved == prefix or resolved.startswith(prefix + os.sep):
            return prefix
    return None


def validate_capture_dir(path: str, must_exist: bool = True) -> list[str]:
    """Validate a capture output directory.

    Must be absolute and outside system directories. With must_exist, it
    must also be an existing, writable directory.
    """
    p = Path(path)
    if not p.is_absolute():
        return ["Capture directory must be absolute"]

    prefix = _blocked_prefix(str(p.resolve()))
    if prefix is not None:
        return [f"Cannot write to system directory: {prefix}"]

    if not must_exist:
        return []
    if not p.exists():
        return [f"Capture directory does not exist: {path}"]
    if not p.is_dir():
        return [f"Capture path is not a directory: {path}"]
    if not os.access(str(p), os.W_OK):
        return [f"Capture directory is not writable: {path}"]
    return []


def validate_capture_format(fmt: str) -> list[str]:
    if fmt.upper() in ALLOWED_CAPTURE_FORMATS:
        return []
    return [f"Capture format '{fmt}' not allowed. Allowed: {sorted(ALLOWED_CAPTURE_FORMATS)}"]


# --- PII stripping for Sentry and crash dumps ---

_HOME = os.path.expanduser("~")
_USERNAME = os.path.basename(_HOME)
_PATH_PATTERN = re.compile(r"/Users/[^/\s]+|/home/[^/\s]+|C:\\Users\\[^\\\s]+")
_SENSITIVE_KEYS = {"_token", "token", "auth", "key", "secret", "password", "dsn"}
REDACTED = "<REDACTED>"


def _redact_text(text: str) -> str:
    text = text.replace(_HOME, "<HOME>")
    # Short names would also match unrelated words
    if len(_USERNAME) > 2:
        text = text.replace(_USERNAME, "<USER>")
    return _PATH_PATTERN.sub("<REDACTED_PATH>", text)


def _redact_sensitive_keys(d: dict):
    for key in list(d.keys()):
        if any(s in key.lower() for s in _SENSITIVE_KEYS):
            d[key] = REDACTED


def strip_pii(event: dict, hint: dict) -> dict:
    """Sentry before_send hook; also applied to crash dumps.

    Replaces home directories and user names in every string, and
    redacts token-like keys in "extra" and in each context.
    """
    event = json.loads(_redact_text(json.dumps(event)))
    _redact_sensitive_keys(event.get("extra", {}))
    for ctx in event.get("contexts", {}).values():
        if isinstance(ctx, dict):
            _redact_sensitive_keys(ctx)
    return event
