"""Tests for the jeepney-backed BusClient."""

from __future__ import annotations

import queue
from unittest.mock import MagicMock, patch

import pytest
from jeepney import (
    DBusAddress,
    DBusErrorResponse,
    HeaderFields,
    MessageType,
    new_error,
    new_method_call,
)

from nm_file_secret_agent.bus.client import (
    AGENT_MANAGER_INTERFACE,
    AGENT_MANAGER_PATH,
    BUS_QUERY_TIMEOUT,
    REGISTRATION_TIMEOUT,
    SECRET_AGENT_PATH,
    AgentManager,
    BusClient,
    JeepneyBus,
    agent_call_rule,
    name_owner_rule,
)
from nm_file_secret_agent.errors import IdentityQueryFailed, RegistrationFailed

NM_NAME = "org.freedesktop.NetworkManager"


def _error_response(name: str = "org.freedesktop.DBus.Error.NameHasNoOwner") -> DBusErrorResponse:
    bus_daemon = DBusAddress("/org/freedesktop/DBus", bus_name="org.freedesktop.DBus")
    call = new_method_call(bus_daemon, "GetNameOwner", "s", (NM_NAME,))
    return DBusErrorResponse(new_error(call, name, "s", ("no owner",)))


@pytest.fixture()
def router() -> MagicMock:
    router = MagicMock()
    router.unique_name = ":1.3"
    return router


@pytest.fixture()
def proxy_cls():
    with patch("nm_file_secret_agent.bus.client.Proxy") as proxy_cls:
        yield proxy_cls


class TestProtocol:
    def test_jeepney_bus_is_a_bus_client(self, router: MagicMock):
        assert isinstance(JeepneyBus(router), BusClient)

    def test_unique_name(self, router: MagicMock):
        assert JeepneyBus(router).unique_name == ":1.3"


class TestGetNameOwner:
    def test_returns_owner(self, router: MagicMock, proxy_cls: MagicMock):
        proxy_cls.return_value.GetNameOwner.return_value = (":1.7",)
        assert JeepneyBus(router).get_name_owner(NM_NAME) == ":1.7"
        proxy_cls.return_value.GetNameOwner.assert_called_once_with(NM_NAME)
        assert proxy_cls.call_args.kwargs["timeout"] == BUS_QUERY_TIMEOUT

    @pytest.mark.parametrize("error", [_error_response(), TimeoutError(), OSError("closed")])
    def test_failures_become_identity_query_failed(
        self, router: MagicMock, proxy_cls: MagicMock, error: Exception,
    ):
        proxy_cls.return_value.GetNameOwner.side_effect = error
        with pytest.raises(IdentityQueryFailed, match=NM_NAME):
            JeepneyBus(router).get_name_owner(NM_NAME)


class TestWatchNameOwner:
    def test_installs_filter_and_match_rule(self, router: MagicMock, proxy_cls: MagicMock):
        bus = JeepneyBus(router)
        bus.watch_name_owner(NM_NAME)

        router.filter.assert_called_once()
        rule = router.filter.call_args.args[0]
        assert rule.header_fields["member"] == "NameOwnerChanged"
        proxy_cls.return_value.AddMatch.assert_called_once_with(rule)

    def test_add_match_failure(self, router: MagicMock, proxy_cls: MagicMock):
        proxy_cls.return_value.AddMatch.side_effect = TimeoutError()
        with pytest.raises(IdentityQueryFailed):
            JeepneyBus(router).watch_name_owner(NM_NAME)


class TestRegisterAgent:
    def test_calls_register_with_capabilities(self, router: MagicMock, proxy_cls: MagicMock):
        JeepneyBus(router).register_agent("nm-file-secret-agent", 0)
        proxy_cls.return_value.RegisterWithCapabilities.assert_called_once_with(
            "nm-file-secret-agent", 0,
        )
        assert proxy_cls.call_args.kwargs["timeout"] == REGISTRATION_TIMEOUT

    @pytest.mark.parametrize(
        "error",
        [_error_response("org.freedesktop.NetworkManager.AgentManager.PermissionDenied"), TimeoutError()],
    )
    def test_failures_become_registration_failed(
        self, router: MagicMock, proxy_cls: MagicMock, error: Exception,
    ):
        proxy_cls.return_value.RegisterWithCapabilities.side_effect = error
        with pytest.raises(RegistrationFailed):
            JeepneyBus(router).register_agent("nm-file-secret-agent", 0)


class TestInbox:
    def test_export_filters_agent_calls(self, router: MagicMock):
        JeepneyBus(router).export()
        rule = router.filter.call_args.args[0]
        assert rule.header_fields["path"] == SECRET_AGENT_PATH
        assert rule.message_type == MessageType.method_call

    def test_receive_times_out(self, router: MagicMock):
        with pytest.raises(queue.Empty):
            JeepneyBus(router).receive(timeout=0.01)

    def test_send_goes_through_router(self, router: MagicMock):
        message = object()
        JeepneyBus(router).send(message)
        router.send.assert_called_once_with(message)

    def test_close_removes_filters(self, router: MagicMock):
        bus = JeepneyBus(router)
        bus.export()
        bus.close()
        router.filter.return_value.__exit__.assert_called_once()


class TestMessages:
    def test_register_message(self):
        message = AgentManager().RegisterWithCapabilities("nm-file-secret-agent", 1)
        assert message.header.fields[HeaderFields.path] == AGENT_MANAGER_PATH
        assert message.header.fields[HeaderFields.interface] == AGENT_MANAGER_INTERFACE
        assert message.body == ("nm-file-secret-agent", 1)

    def test_name_owner_rule_matches_daemon_signal(self):
        rule = name_owner_rule(NM_NAME)
        serialized = rule.serialise()
        assert "member='NameOwnerChanged'" in serialized
        assert f"arg0='{NM_NAME}'" in serialized

    def test_agent_call_rule(self):
        assert "path='/org/freedesktop/NetworkManager/SecretAgent'" in agent_call_rule().serialise()
