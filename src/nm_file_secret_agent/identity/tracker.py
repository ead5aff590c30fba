"""NetworkManager bus identity tracker.

Keeps the set of bus names under which NetworkManager may call the agent:
its well-known name and the unique name currently owning it. The set is
seeded at startup and updated from ``NameOwnerChanged`` notifications so
the agent keeps trusting NetworkManager across daemon restarts.

All state is in-memory and thread-safe via a single lock.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

from nm_file_secret_agent.bus.client import NM_BUS_NAME, BusClient

logger = logging.getLogger(__name__)

RestartListener = Callable[[str], None]


class IdentityTracker:
    """Tracks which bus identities belong to NetworkManager.

    Listeners registered with :meth:`add_restart_listener` are called with
    the new unique name whenever NetworkManager acquires its well-known name
    under a new identity. Exceptions raised by listeners propagate.
    """

    def __init__(self, bus: BusClient, daemon_name: str = NM_BUS_NAME) -> None:
        self._bus = bus
        self._daemon_name = daemon_name
        self._identities: set[str] = set()
        self._lock = threading.Lock()
        self._restart_listeners: list[RestartListener] = []

    @property
    def daemon_name(self) -> str:
        return self._daemon_name

    @property
    def identities(self) -> frozenset[str]:
        """Snapshot of the currently trusted identities."""
        with self._lock:
            return frozenset(self._identities)

    def add_restart_listener(self, listener: RestartListener) -> None:
        self._restart_listeners.append(listener)

    def seed(self) -> None:
        """Subscribe to owner changes and record the current identities.

        The subscription comes first so that a restart between the two
        steps is not missed.

        Raises:
            IdentityQueryFailed: If the bus cannot be queried.
        """
        logger.debug(
            "Querying the bus for all names that %s operates on", self._daemon_name
        )
        self._bus.watch_name_owner(self._daemon_name)
        owner = self._bus.get_name_owner(self._daemon_name)

        with self._lock:
            self._identities.add(self._daemon_name)
            self._identities.add(owner)

        logger.debug("%s is currently owned by %s", self._daemon_name, owner)

    def on_identity_change(
        self,
        subject: str,
        old: str | None,
        new: str | None,
    ) -> None:
        """Apply a ``NameOwnerChanged`` notification.

        Notifications about other names are ignored. Empty strings count
        as absent, as on the wire.
        """
        if subject != self._daemon_name:
            return

        with self._lock:
            if old:
                self._identities.discard(old)
            if new:
                self._identities.add(new)

        if old and not new:
            logger.warning("%s (%s) left the bus", self._daemon_name, old)
            return

        if new:
            logger.info(
                "%s is now owned by %s; re-registering secret agent",
                self._daemon_name,
                new,
            )
            for listener in self._restart_listeners:
                listener(new)

    def contains(self, identity: str) -> bool:
        with self._lock:
            return identity in self._identities
