"""nm-file-secret-agent: a NetworkManager secret agent backed by files."""

__version__ = "0.4.0"

from nm_file_secret_agent.agent.handler import AgentProtocolHandler
from nm_file_secret_agent.config import load_config, validate_store
from nm_file_secret_agent.credentials.encoder import SettingsEncoder
from nm_file_secret_agent.credentials.resolver import SecretResolver
from nm_file_secret_agent.errors import (
    AccessDenied,
    BusError,
    ConfigError,
    IdentityQueryFailed,
    MalformedRequest,
    RegistrationFailed,
    SecretAgentError,
    SourceUnreadable,
    UnsupportedFlag,
)
from nm_file_secret_agent.identity.tracker import IdentityTracker
from nm_file_secret_agent.mapping.store import MappingStore
from nm_file_secret_agent.models import (
    AgentState,
    ConnectionRequest,
    GetSecretsFlags,
    MappingEntry,
    ResolvedSecret,
    SecretAgentCapabilities,
)

__all__ = [
    "AccessDenied",
    "AgentProtocolHandler",
    "AgentState",
    "BusError",
    "ConfigError",
    "ConnectionRequest",
    "GetSecretsFlags",
    "IdentityQueryFailed",
    "IdentityTracker",
    "load_config",
    "MalformedRequest",
    "MappingEntry",
    "MappingStore",
    "RegistrationFailed",
    "ResolvedSecret",
    "SecretAgentCapabilities",
    "SecretAgentError",
    "SecretResolver",
    "SettingsEncoder",
    "SourceUnreadable",
    "UnsupportedFlag",
    "validate_store",
    "__version__",
]
