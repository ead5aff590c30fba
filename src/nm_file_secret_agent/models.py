"""Core data models for nm-file-secret-agent.

Defines the schemas for:
- Mapping entries (which configured file answers which request)
- Connection requests (what NetworkManager asked for)
- Resolved secrets (key/value pairs read from the configured files)
- NetworkManager's secret agent flag and capability bitmasks
"""

from __future__ import annotations

import enum

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, SecretStr

# --- Enums ---


class GetSecretsFlags(enum.IntFlag):
    """Values modifying the behavior of a GetSecrets request.

    Mirrors NetworkManager's ``NMSecretAgentGetSecretsFlags``.
    """

    NONE = 0x0
    ALLOW_INTERACTION = 0x1
    REQUEST_NEW = 0x2
    USER_REQUESTED = 0x4
    WPS_PBC_ACTIVE = 0x8
    NO_ERRORS = 0x40000000
    ONLY_SYSTEM = 0x80000000


class SecretAgentCapabilities(enum.IntFlag):
    """Capabilities announced to NetworkManager on registration."""

    NONE = 0x0
    VPN_HINTS = 0x1


class AgentState(enum.StrEnum):
    UNREGISTERED = "unregistered"
    SERVING = "serving"


# --- Configuration Schema ---


class MappingEntry(BaseModel):
    """A configured rule mapping NetworkManager requests to a secret file.

    Every ``match_*`` field that is ``None`` matches anything. ``key`` names
    the secret inside the requested setting and may be a dotted path such as
    ``peers.<pubkey>.preshared-key``.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    match_id: str | None = None
    match_uuid: str | None = None
    match_type: str | None = None
    match_iface: str | None = None
    match_setting: str | None = None
    key: str = Field(..., min_length=1)
    source: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("file", "source"),
    )


# --- Request / Response ---


class ConnectionRequest(BaseModel):
    """The data needed to evaluate mapping entries for one GetSecrets call."""

    model_config = ConfigDict(frozen=True)

    id: str
    uuid: str
    type: str
    iface_name: str | None = None
    setting_name: str
    hints: frozenset[str] = Field(default_factory=frozenset)
    flags: int = Field(0, ge=0)

    @property
    def get_secrets_flags(self) -> GetSecretsFlags:
        return GetSecretsFlags(self.flags)

    @property
    def requests_new(self) -> bool:
        """True if NetworkManager demands fresh credentials."""
        return GetSecretsFlags.REQUEST_NEW in self.get_secrets_flags


class ResolvedSecret(BaseModel):
    """A ``key -> value`` secret read from a configured source.

    The value is a ``SecretStr`` so it never shows up in reprs or logs.
    """

    model_config = ConfigDict(frozen=True)

    key: str
    value: SecretStr

    def reveal(self) -> str:
        return self.value.get_secret_value()
