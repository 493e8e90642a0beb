"""Instance identity.

An instance ID is 20 lowercase hex characters:

    <project fingerprint: 8> <unix time, last 8 digits: 8> <random: 4>

The fingerprint keeps IDs traceable to the project they belong to, the time
component separates activations, and the random part separates shells
started within the same second.
"""

from __future__ import annotations

import hashlib
import os
import re
import secrets
import time
from os import PathLike

from devsandbox.errors import InvalidInstanceIdError

INSTANCE_ID_LENGTH = 20
FINGERPRINT_LENGTH = 8
TIME_LENGTH = 8
RANDOM_LENGTH = 4

_INSTANCE_ID_RE = re.compile(r"[0-9a-f]{20}")


def canonical_project_root(project_root: str | PathLike[str]) -> str:
    """Absolute, normalized project path. Does not touch the filesystem."""
    return os.path.normpath(os.path.abspath(os.fspath(project_root)))


def project_fingerprint(project_root: str | PathLike[str]) -> str:
    """First 8 hex chars of the MD5 digest of the canonical project path.

    Used as the instance ID prefix and to key cache-rooted layouts. Kept
    separate from the port seed in devsandbox.core.ports.
    """
    path = canonical_project_root(project_root)
    digest = hashlib.md5(path.encode("utf-8"), usedforsecurity=False).hexdigest()
    return digest[:FINGERPRINT_LENGTH]


def generate_instance_id(
    project_root: str | PathLike[str],
    now: float | None = None,
) -> str:
    """Generate a new instance ID for one activation of the project."""
    timestamp = int(time.time() if now is None else now)
    time_part = f"{timestamp % 10**TIME_LENGTH:0{TIME_LENGTH}d}"
    random_part = secrets.token_hex(RANDOM_LENGTH // 2)
    return f"{project_fingerprint(project_root)}{time_part}{random_part}"


def validate_instance_id(value: object) -> bool:
    """True only for exactly 20 lowercase hex characters."""
    return isinstance(value, str) and _INSTANCE_ID_RE.fullmatch(value) is not None


def require_instance_id(value: object) -> str:
    """Return value unchanged if it is a valid instance ID.

    Raises:
        InvalidInstanceIdError: If the value is malformed. Never coerced.
    """
    if not validate_instance_id(value):
        raise InvalidInstanceIdError(
            f"Invalid instance ID {value!r}: must be exactly "
            f"{INSTANCE_ID_LENGTH} lowercase hex characters"
        )
    return value  # type: ignore[return-value]
