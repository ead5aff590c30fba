"""Outbound D-Bus operations, built on jeepney's threaded router.

The router runs a receiver thread that hands replies to waiting callers
and copies every other matching message into a single inbox queue. The
agent's dispatch loop consumes that inbox one message at a time, so
method calls and ``NameOwnerChanged`` signals are processed serially
while outbound calls made from inside the loop still get their replies.
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import Iterator
from queue import Queue
from typing import Protocol, runtime_checkable

from jeepney import (
    DBusErrorResponse,
    MatchRule,
    Message,
    MessageGenerator,
    message_bus,
    new_method_call,
)
from jeepney.io.threading import DBusRouter, Proxy, open_dbus_router

from nm_file_secret_agent.errors import BusError, IdentityQueryFailed, RegistrationFailed

logger = logging.getLogger(__name__)

# --- Well-known names ---

NM_BUS_NAME = "org.freedesktop.NetworkManager"
AGENT_MANAGER_PATH = "/org/freedesktop/NetworkManager/AgentManager"
AGENT_MANAGER_INTERFACE = "org.freedesktop.NetworkManager.AgentManager"
SECRET_AGENT_PATH = "/org/freedesktop/NetworkManager/SecretAgent"
SECRET_AGENT_INTERFACE = "org.freedesktop.NetworkManager.SecretAgent"
AGENT_IDENTIFIER = "nm-file-secret-agent"

BUS_DAEMON_NAME = "org.freedesktop.DBus"
BUS_DAEMON_PATH = "/org/freedesktop/DBus"

# Seconds to wait for replies from the bus daemon / NetworkManager
BUS_QUERY_TIMEOUT = 5.0
REGISTRATION_TIMEOUT = 1.0


@runtime_checkable
class BusClient(Protocol):
    """Protocol for the outbound bus operations the agent needs.

    Any object with these three methods satisfies this protocol.
    """

    def get_name_owner(self, name: str) -> str:
        """Return the unique name currently owning *name*.

        Raises:
            IdentityQueryFailed: If the query fails or *name* has no owner.
        """
        ...

    def watch_name_owner(self, name: str) -> None:
        """Start delivering ``NameOwnerChanged`` signals for *name*.

        Raises:
            IdentityQueryFailed: If the subscription fails.
        """
        ...

    def register_agent(self, identifier: str, capabilities: int) -> None:
        """Register this connection as a secret agent with NetworkManager.

        Raises:
            RegistrationFailed: If NetworkManager rejects or never answers.
        """
        ...


class AgentManager(MessageGenerator):
    """Message generator for NetworkManager's AgentManager object."""

    interface = AGENT_MANAGER_INTERFACE

    def __init__(
        self,
        object_path: str = AGENT_MANAGER_PATH,
        bus_name: str = NM_BUS_NAME,
    ) -> None:
        super().__init__(object_path=object_path, bus_name=bus_name)

    def RegisterWithCapabilities(self, identifier: str, capabilities: int) -> Message:  # noqa: N802
        return new_method_call(
            self, "RegisterWithCapabilities", "su", (identifier, capabilities)
        )


def name_owner_rule(name: str) -> MatchRule:
    """Match ``NameOwnerChanged`` signals of the bus daemon about *name*."""
    rule = MatchRule(
        type="signal",
        sender=BUS_DAEMON_NAME,
        interface=BUS_DAEMON_NAME,
        member="NameOwnerChanged",
        path=BUS_DAEMON_PATH,
    )
    rule.add_arg_condition(0, name)
    return rule


def agent_call_rule(object_path: str = SECRET_AGENT_PATH) -> MatchRule:
    """Match method calls addressed to the secret agent object."""
    return MatchRule(type="method_call", path=object_path)


class JeepneyBus:
    """BusClient implementation on a jeepney ``DBusRouter``."""

    def __init__(self, router: DBusRouter) -> None:
        self._router = router
        self._inbox: Queue[Message] = Queue()
        self._filters = contextlib.ExitStack()

    @property
    def unique_name(self) -> str:
        return self._router.unique_name

    # --- Outbound calls ---

    def get_name_owner(self, name: str) -> str:
        proxy = Proxy(message_bus, self._router, timeout=BUS_QUERY_TIMEOUT)
        try:
            (owner,) = proxy.GetNameOwner(name)
        except (DBusErrorResponse, TimeoutError, OSError) as e:
            raise IdentityQueryFailed(
                f"Could not query owner of name {name}: {e}"
            ) from e
        return owner

    def watch_name_owner(self, name: str) -> None:
        rule = name_owner_rule(name)
        self._filters.enter_context(self._router.filter(rule, queue=self._inbox))
        proxy = Proxy(message_bus, self._router, timeout=BUS_QUERY_TIMEOUT)
        try:
            proxy.AddMatch(rule)
        except (DBusErrorResponse, TimeoutError, OSError) as e:
            raise IdentityQueryFailed(
                f"Could not subscribe to owner changes of {name}: {e}"
            ) from e

    def register_agent(self, identifier: str, capabilities: int) -> None:
        logger.debug("Registering secret agent %s with NetworkManager", identifier)
        proxy = Proxy(AgentManager(), self._router, timeout=REGISTRATION_TIMEOUT)
        try:
            proxy.RegisterWithCapabilities(identifier, capabilities)
        except (DBusErrorResponse, TimeoutError, OSError) as e:
            raise RegistrationFailed(
                f"Could not register as secret agent with NetworkManager: {e}"
            ) from e

    # --- Inbound messages ---

    def export(self, object_path: str = SECRET_AGENT_PATH) -> None:
        """Start delivering method calls for *object_path* to the inbox."""
        self._filters.enter_context(
            self._router.filter(agent_call_rule(object_path), queue=self._inbox)
        )

    def receive(self, timeout: float | None = None) -> Message:
        """Block until the next inbox message arrives.

        Raises:
            queue.Empty: If *timeout* elapses first.
        """
        return self._inbox.get(timeout=timeout)

    def send(self, message: Message) -> None:
        self._router.send(message)

    def close(self) -> None:
        self._filters.close()


@contextlib.contextmanager
def open_system_bus() -> Iterator[JeepneyBus]:
    """Connect to the system bus and yield a JeepneyBus on it.

    Raises:
        BusError: If the system bus cannot be reached.
    """
    logger.debug("Connecting to system bus")
    with contextlib.ExitStack() as stack:
        try:
            router = stack.enter_context(open_dbus_router(bus="SYSTEM"))
        except (OSError, KeyError, ValueError) as e:
            raise BusError(f"Could not connect to the system D-Bus daemon: {e}") from e

        bus = JeepneyBus(router)
        stack.callback(bus.close)
        logger.debug("Connected to bus as %s", bus.unique_name)
        yield bus
