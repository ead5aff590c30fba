"""Inbound D-Bus dispatch for the secret agent object.

Messages are handled strictly one at a time:

- method calls on the agent object are decoded, passed to the
  AgentProtocolHandler and answered with a method return or an error;
- ``NameOwnerChanged`` signals are passed to the IdentityTracker.

A failing method call is answered with an error and the loop continues.
A failed re-registration after a NetworkManager restart is fatal and
propagates out of :meth:`AgentServer.serve_forever`.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from queue import Empty
from typing import Any

from jeepney import HeaderFields, Message, MessageType, new_error, new_method_return

from nm_file_secret_agent.agent.handler import AgentProtocolHandler
from nm_file_secret_agent.bus.client import (
    SECRET_AGENT_INTERFACE,
    SECRET_AGENT_PATH,
    JeepneyBus,
)
from nm_file_secret_agent.bus.variants import (
    SETTINGS_SIGNATURE,
    unwrap_settings,
    wrap_settings,
)
from nm_file_secret_agent.errors import AccessDenied, SecretAgentError
from nm_file_secret_agent.identity.tracker import IdentityTracker

logger = logging.getLogger(__name__)

ERROR_FAILED = "org.freedesktop.DBus.Error.Failed"
ERROR_UNKNOWN_METHOD = "org.freedesktop.DBus.Error.UnknownMethod"
ERROR_INVALID_ARGS = "org.freedesktop.DBus.Error.InvalidArgs"

# How often the serve loop checks for shutdown, in seconds
POLL_INTERVAL = 1.0

Reply = tuple[str | None, tuple[Any, ...]]


# --- Method adapters: decode body, call handler, encode reply ---


def _get_secrets(handler: AgentProtocolHandler, sender: str | None, body: tuple) -> Reply:
    connection, connection_path, setting_name, hints, flags = body
    secrets = handler.get_secrets(
        sender,
        unwrap_settings(connection),
        connection_path,
        setting_name,
        hints,
        flags,
    )
    return SETTINGS_SIGNATURE, (wrap_settings(secrets),)


def _cancel_get_secrets(handler: AgentProtocolHandler, sender: str | None, body: tuple) -> Reply:
    connection_path, setting_name = body
    handler.cancel_get_secrets(sender, connection_path, setting_name)
    return None, ()


def _save_secrets(handler: AgentProtocolHandler, sender: str | None, body: tuple) -> Reply:
    connection, connection_path = body
    handler.save_secrets(sender, unwrap_settings(connection), connection_path)
    return None, ()


def _delete_secrets(handler: AgentProtocolHandler, sender: str | None, body: tuple) -> Reply:
    connection, connection_path = body
    handler.delete_secrets(sender, unwrap_settings(connection), connection_path)
    return None, ()


_METHODS: dict[str, tuple[str, Callable[[AgentProtocolHandler, str | None, tuple], Reply]]] = {
    "GetSecrets": ("a{sa{sv}}osasu", _get_secrets),
    "CancelGetSecrets": ("os", _cancel_get_secrets),
    "SaveSecrets": ("a{sa{sv}}o", _save_secrets),
    "DeleteSecrets": ("a{sa{sv}}o", _delete_secrets),
}


class AgentServer:
    """Serves the SecretAgent interface and tracks NetworkManager restarts."""

    def __init__(
        self,
        bus: JeepneyBus,
        handler: AgentProtocolHandler,
        tracker: IdentityTracker,
        object_path: str = SECRET_AGENT_PATH,
    ) -> None:
        self._bus = bus
        self._handler = handler
        self._tracker = tracker
        self._object_path = object_path
        self._stop = threading.Event()

    def start(self) -> None:
        """Export the agent object, then seed identities and register.

        The object is exported first so calls arriving right after
        registration are queued rather than lost.
        """
        self._bus.export(self._object_path)
        self._handler.start()

    def serve_forever(self) -> None:
        """Process inbox messages until :meth:`shutdown` is called.

        Raises:
            RegistrationFailed: If re-registering after a restart fails.
        """
        self._stop.clear()
        while not self._stop.is_set():
            try:
                message = self._bus.receive(timeout=POLL_INTERVAL)
            except Empty:
                continue
            reply = self.handle_message(message)
            if reply is not None:
                self._bus.send(reply)

    def shutdown(self) -> None:
        self._stop.set()

    def handle_message(self, message: Message) -> Message | None:
        """Handle one inbox message, returning the reply to send (if any)."""
        message_type = message.header.message_type
        if message_type == MessageType.signal:
            self._handle_signal(message)
            return None
        if message_type == MessageType.method_call:
            return self._handle_call(message)
        return None

    def _handle_signal(self, message: Message) -> None:
        fields = message.header.fields
        if fields.get(HeaderFields.member) != "NameOwnerChanged":
            return
        subject, old, new = message.body
        logger.debug("Name owner of %s changed from %r to %r", subject, old, new)
        self._tracker.on_identity_change(subject, old or None, new or None)

    def _handle_call(self, message: Message) -> Message:
        fields = message.header.fields
        member = fields.get(HeaderFields.member)
        interface = fields.get(HeaderFields.interface)
        sender = fields.get(HeaderFields.sender)

        if interface not in (None, SECRET_AGENT_INTERFACE) or member not in _METHODS:
            logger.debug("Rejecting unknown method %s.%s from %s", interface, member, sender)
            return new_error(
                message,
                ERROR_UNKNOWN_METHOD,
                "s",
                (f"No such method {member} on {self._object_path}",),
            )

        signature, adapter = _METHODS[member]
        if fields.get(HeaderFields.signature, "") != signature:
            return new_error(
                message,
                ERROR_INVALID_ARGS,
                "s",
                (f"{member} expects arguments of type {signature}",),
            )

        try:
            reply_signature, reply_body = adapter(self._handler, sender, message.body)
        except AccessDenied as e:
            logger.warning("Denied %s() call from %s: %s", member, sender, e.reason)
            return new_error(message, ERROR_FAILED, "s", (str(e),))
        except SecretAgentError as e:
            logger.error("Could not execute %s(): %s", member, e)
            return new_error(message, ERROR_FAILED, "s", (str(e),))
        except Exception:
            logger.exception("Unexpected error while executing %s()", member)
            return new_error(message, ERROR_FAILED, "s", ("Internal error",))

        return new_method_return(message, reply_signature, reply_body)
