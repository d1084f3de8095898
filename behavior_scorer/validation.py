"""Input validation and path sanitization helpers."""

from __future__ import annotations

import re
from pathlib import Path, PurePath

from behavior_scorer.errors import InvalidInputError

MAX_SESSION_ID_LENGTH = 256
MAX_TRANSCRIPT_BYTES = 10 * 1024 * 1024

_SESSION_ID_EXTRA_CHARS = frozenset("-_")
_FILENAME_REPLACE = re.compile(r"[^\w-]")


def is_valid_session_id(session_id: str) -> bool:
    """Return True for non-empty ids of at most 256 alphanumeric, '-' or '_' characters."""
    if not isinstance(session_id, str):
        return False
    if not session_id or len(session_id) > MAX_SESSION_ID_LENGTH:
        return False
    return all(ch.isalnum() or ch in _SESSION_ID_EXTRA_CHARS for ch in session_id)


def validate_session_id(session_id: str) -> str:
    """Return the session id unchanged or raise InvalidInputError."""
    if not is_valid_session_id(session_id):
        raise InvalidInputError(
            "Invalid session ID: expected 1-256 characters of letters, digits, '-' or '_'"
        )
    return session_id


def validate_transcript(transcript: str) -> str:
    """Return the transcript unchanged or raise InvalidInputError."""
    if not isinstance(transcript, str):
        raise InvalidInputError("Transcript must be text")
    # Character count is a lower bound on the encoded size.
    if len(transcript) > MAX_TRANSCRIPT_BYTES or _encoded_size(transcript) > MAX_TRANSCRIPT_BYTES:
        raise InvalidInputError("Transcript exceeds maximum size of 10MB")
    if "\0" in transcript:
        raise InvalidInputError("Transcript contains invalid characters (null byte)")
    return transcript


def sanitize_path(base_path: Path, user_path: str) -> Path | None:
    """Resolve a user-supplied relative path under base_path.

    Returns None for traversal components, home expansion, absolute paths, or
    anything that resolves (through symlinks) outside base_path.
    """
    candidate = user_path.strip()
    if not candidate or ".." in candidate or "~" in candidate or candidate.startswith("/"):
        return None
    if PurePath(candidate).is_absolute():
        return None

    base = base_path.resolve()
    resolved = (base / candidate).resolve()
    if not resolved.is_relative_to(base):
        return None
    return resolved


def ensure_within(base_path: Path, path: Path) -> Path:
    """Return the resolved path, raising InvalidInputError when it escapes base_path."""
    try:
        base = base_path.resolve(strict=True)
    except OSError as exc:
        raise InvalidInputError(f"Invalid base path: {exc}") from exc
    try:
        resolved = path.resolve(strict=True)
    except OSError as exc:
        raise InvalidInputError(f"Invalid directory path: {exc}") from exc

    if not resolved.is_relative_to(base):
        raise InvalidInputError("Directory path is outside allowed base path")
    return resolved


def session_id_from_filename(filename: str) -> str:
    """Derive a session id from a transcript file name (stem, unsafe chars replaced)."""
    stem = PurePath(filename).stem
    return _FILENAME_REPLACE.sub("_", stem)[:MAX_SESSION_ID_LENGTH]


def _encoded_size(text: str) -> int:
    return len(text.encode("utf-8", errors="surrogatepass"))
