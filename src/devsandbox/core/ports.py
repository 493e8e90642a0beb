"""Deterministic port allocation.

The base port of a project is a pure function of its path. Each instance is
offset from the base by twice its instance numeric, so every instance owns
an even offset and the odd port next to it stays free for a secondary
listener.

Collision avoidance is probabilistic, not an allocation table:
- unrelated projects can share a base port;
- two instances of one project collide when their numerics are congruent
  modulo range_width / 2;
- more than range_width / 2 concurrent instances of one project must collide.
A collision shows up as PortInUseError when the service starts.
"""

from __future__ import annotations

import errno
import hashlib
import logging
import socket
from os import PathLike

from devsandbox.config import PortConfig
from devsandbox.core.identity import canonical_project_root, require_instance_id
from devsandbox.errors import PortOutOfRangeError

logger = logging.getLogger(__name__)

SEED_HEX_CHARS = 8
SUFFIX_HEX_CHARS = 8


def project_port_seed(project_root: str | PathLike[str]) -> int:
    """Unsigned 32-bit seed from the SHA-256 digest of the canonical path.

    Deliberately independent from project_fingerprint().
    """
    path = canonical_project_root(project_root)
    digest = hashlib.sha256(path.encode("utf-8")).hexdigest()
    return int(digest[:SEED_HEX_CHARS], 16)


class PortAllocator:
    """Port arithmetic over a fixed [range_start, range_start + range_width) window."""

    def __init__(self, config: PortConfig | None = None) -> None:
        config = config or PortConfig()
        self._range_start = config.range_start
        self._range_width = config.range_width
        self._instance_slice = config.instance_slice

    @property
    def range_start(self) -> int:
        return self._range_start

    @property
    def range_width(self) -> int:
        return self._range_width

    @property
    def range_end(self) -> int:
        """Exclusive upper bound."""
        return self._range_start + self._range_width

    def derive_base_port(self, project_root: str | PathLike[str]) -> int:
        return self._range_start + project_port_seed(project_root) % self._range_width

    def instance_numeric(self, instance_id: str) -> int:
        """Integer offset source for an instance.

        'suffix' reads the last 8 hex chars (time tail + random part),
        'full' reads the whole ID as base 16.
        """
        require_instance_id(instance_id)
        if self._instance_slice == "full":
            return int(instance_id, 16)
        return int(instance_id[-SUFFIX_HEX_CHARS:], 16)

    def derive_instance_port(
        self,
        project_root: str | PathLike[str],
        instance_numeric: int,
    ) -> int:
        return self.derive_service_port(project_root, instance_numeric, 0)

    def derive_service_port(
        self,
        project_root: str | PathLike[str],
        instance_numeric: int,
        service_index: int = 0,
    ) -> int:
        """Port for listener `service_index` (0 primary, 1 secondary) of an instance."""
        if isinstance(instance_numeric, bool) or not isinstance(instance_numeric, int):
            raise PortOutOfRangeError(
                f"Instance numeric must be an integer, got {instance_numeric!r}"
            )
        if instance_numeric < 0:
            raise PortOutOfRangeError(
                f"Instance numeric must be non-negative, got {instance_numeric}"
            )
        if service_index not in (0, 1):
            raise PortOutOfRangeError(
                f"Service index must be 0 or 1, got {service_index}"
            )

        base_offset = self.derive_base_port(project_root) - self._range_start
        instance_offset = (instance_numeric * 2) % self._range_width
        offset = (base_offset + instance_offset + service_index) % self._range_width
        return self.check(self._range_start + offset)

    def port_for_instance(self, project_root: str | PathLike[str], instance_id: str) -> int:
        return self.derive_instance_port(project_root, self.instance_numeric(instance_id))

    def check(self, port: int) -> int:
        """Return port unchanged if it lies inside the range."""
        if not self._range_start <= port < self.range_end:
            raise PortOutOfRangeError(
                f"Port {port} must be in range [{self._range_start}, {self.range_end})"
            )
        return port


def is_port_free(port: int, host: str = "127.0.0.1") -> bool:
    """Best-effort check that nothing is listening on host:port.

    Another process can still grab the port between this check and the
    service binding it.
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((host, port))
        except OSError as e:
            if e.errno == errno.EADDRINUSE:
                logger.debug("Port %d is in use on %s", port, host)
                return False
            raise
    return True
