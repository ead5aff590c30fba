"""Secret agent protocol handler.

Implements the four operations of NetworkManager's SecretAgent interface
on top of the resolver and encoder, gating secret requests on the
caller's bus identity. The handler knows nothing about message
marshaling; the bus server decodes calls into plain Python values before
they reach it.

Lifecycle::

    handler = AgentProtocolHandler(resolver, tracker, bus)
    handler.start()   # seed identities, register -> SERVING

Every time NetworkManager restarts under a new bus identity, the tracker
notifies the handler, which registers again.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from nm_file_secret_agent.bus.client import AGENT_IDENTIFIER, BusClient
from nm_file_secret_agent.bus.variants import NestedSettingsMap
from nm_file_secret_agent.credentials.encoder import SettingsEncoder
from nm_file_secret_agent.credentials.resolver import SecretResolver
from nm_file_secret_agent.errors import AccessDenied, MalformedRequest
from nm_file_secret_agent.identity.tracker import IdentityTracker
from nm_file_secret_agent.models import (
    AgentState,
    ConnectionRequest,
    SecretAgentCapabilities,
)

logger = logging.getLogger(__name__)


class AgentProtocolHandler:
    """Answers GetSecrets, CancelGetSecrets, SaveSecrets and DeleteSecrets.

    The agent is read-only: save and delete requests are acknowledged and
    discarded, and cancellation has nothing to abort because lookups are
    synchronous.
    """

    def __init__(
        self,
        resolver: SecretResolver,
        tracker: IdentityTracker,
        bus: BusClient,
        encoder: SettingsEncoder | None = None,
        identifier: str = AGENT_IDENTIFIER,
        capabilities: SecretAgentCapabilities = SecretAgentCapabilities.NONE,
    ) -> None:
        self._resolver = resolver
        self._tracker = tracker
        self._bus = bus
        self._encoder = encoder or SettingsEncoder()
        self._identifier = identifier
        self._capabilities = capabilities
        self._state = AgentState.UNREGISTERED
        self._tracker.add_restart_listener(self._on_daemon_restart)

    @property
    def state(self) -> AgentState:
        return self._state

    # --- Registration ---

    def start(self) -> None:
        """Seed NetworkManager's identities and register with it.

        Raises:
            IdentityQueryFailed: If the identities cannot be queried.
            RegistrationFailed: If registration fails.
        """
        self._tracker.seed()
        self.register()
        self._state = AgentState.SERVING
        logger.info("Registered with NetworkManager; now serving D-Bus API")

    def register(self) -> None:
        self._bus.register_agent(self._identifier, int(self._capabilities))

    def _on_daemon_restart(self, new_owner: str) -> None:
        # RegistrationFailed propagates: an unregistered agent never gets calls
        self.register()
        logger.info("Re-registered with NetworkManager at %s", new_owner)

    # --- Authorization ---

    def verify_sender(self, sender: str | None) -> None:
        """Ensure the call came from NetworkManager.

        Raises:
            AccessDenied: If *sender* is absent or not a known identity.
        """
        if not sender:
            logger.debug("Denying method access for sender without a bus name")
            raise AccessDenied("sender has no bus name")

        if not self._tracker.contains(sender):
            logger.debug(
                "Denying method access for sender %s that is not NetworkManager",
                sender,
            )
            raise AccessDenied(f"sender {sender} is not NetworkManager")

    # --- SecretAgent operations ---

    def get_secrets(
        self,
        sender: str | None,
        connection: NestedSettingsMap,
        connection_path: str,
        setting_name: str,
        hints: Iterable[str],
        flags: int,
    ) -> NestedSettingsMap:
        """Return the configured secrets of *setting_name* for *connection*.

        Returns an empty map when nothing is configured for the request.

        Raises:
            AccessDenied: If the caller is not NetworkManager.
            MalformedRequest: If the connection profile lacks id/uuid/type.
            UnsupportedFlag: If new credentials are requested.
            SourceUnreadable: If a matched secret file cannot be read.
        """
        logger.debug("Got GetSecrets() call for %s", connection_path)
        self.verify_sender(sender)

        request = build_request(connection, setting_name, hints, flags)
        logger.info(
            "Resolving secret request with configured mapping: "
            "connection id=%s uuid=%s type=%s iface=%s setting=%s hints=%s flags=%#x",
            request.id,
            request.uuid,
            request.type,
            request.iface_name,
            request.setting_name,
            sorted(request.hints),
            request.flags,
        )

        secrets = self._resolver.resolve(request)
        if not secrets:
            logger.info(
                "No entries were configured that match the request so no "
                "secrets are returned"
            )
            return {}

        settings, inserted_keys = self._encoder.encode(setting_name, secrets)

        for hint in sorted(request.hints - inserted_keys):
            logger.warning(
                "Call from NetworkManager hinted at required key %s.%s and while "
                "secret entries are configured in the %s section, %s is not "
                "configured",
                setting_name,
                hint,
                setting_name,
                hint,
            )

        logger.info(
            "Returning secret values for %s",
            ", ".join(f"{setting_name}.{secret.key}" for secret in secrets),
        )
        return {setting_name: settings}

    def cancel_get_secrets(
        self,
        sender: str | None,
        connection_path: str,
        setting_name: str,
    ) -> None:
        logger.debug(
            "Got CancelGetSecrets() call for %s %s from %s",
            connection_path,
            setting_name,
            sender,
        )

    def save_secrets(
        self,
        sender: str | None,
        connection: NestedSettingsMap,
        connection_path: str,
    ) -> None:
        logger.warning(
            "Got SaveSecrets() call for %s but this agent cannot save new secrets",
            connection_path,
        )

    def delete_secrets(
        self,
        sender: str | None,
        connection: NestedSettingsMap,
        connection_path: str,
    ) -> None:
        logger.warning(
            "Got DeleteSecrets() call for %s but this agent cannot delete secrets",
            connection_path,
        )


def build_request(
    connection: NestedSettingsMap,
    setting_name: str,
    hints: Iterable[str],
    flags: int,
) -> ConnectionRequest:
    """Extract the matchable fields of a connection profile.

    ``connection.id``, ``connection.uuid`` and ``connection.type`` are
    required strings; ``connection.interface-name`` is optional but must
    be a string when present.

    Raises:
        MalformedRequest: If a field is missing or not a string.
    """
    section: Any = connection.get("connection")
    if not isinstance(section, dict):
        raise MalformedRequest("Connection profile has no connection section")

    def _required(name: str) -> str:
        value = section.get(name)
        if not isinstance(value, str):
            raise MalformedRequest(f"Connection property connection.{name} is not a string")
        return value

    iface_name = section.get("interface-name")
    if iface_name is not None and not isinstance(iface_name, str):
        raise MalformedRequest(
            "Connection property connection.interface-name is not a string"
        )

    return ConnectionRequest(
        id=_required("id"),
        uuid=_required("uuid"),
        type=_required("type"),
        iface_name=iface_name,
        setting_name=setting_name,
        hints=frozenset(hints),
        flags=flags,
    )
