"""Exception hierarchy for nm-file-secret-agent."""

from __future__ import annotations


class SecretAgentError(Exception):
    """Base class for all errors raised by the agent."""


class AccessDenied(SecretAgentError):
    """Raised when a call does not originate from NetworkManager.

    The message returned to the caller is always the generic
    ``Access Denied``; details only go to the log.
    """

    def __init__(self, reason: str = "Access Denied") -> None:
        self.reason = reason
        super().__init__("Access Denied")


class MalformedRequest(SecretAgentError):
    """Raised when required connection profile fields are missing or mistyped."""


class UnsupportedFlag(SecretAgentError):
    """Raised when NetworkManager asks for something this agent cannot do."""


class SourceUnreadable(SecretAgentError):
    """Raised when a matched entry's secret file cannot be read."""

    def __init__(self, key: str, source: str, orig_exc: Exception | None = None) -> None:
        self.key = key
        self.source = source
        self.orig_exc = orig_exc

        message = f"Could not read secret {key!r} from {source}"
        if orig_exc is not None:
            # decode errors quote the offending bytes, so only OS errors get detail
            detail = getattr(orig_exc, "strerror", None)
            message += f" ({type(orig_exc).__name__}"
            message += f": {detail})" if detail else ")"
        super().__init__(message)


class ConfigError(SecretAgentError):
    """Raised when loading or validating the configuration file fails."""


class BusError(SecretAgentError):
    """Raised when talking to the bus daemon or NetworkManager fails."""


class IdentityQueryFailed(BusError):
    """Raised when NetworkManager's bus identities cannot be determined."""


class RegistrationFailed(BusError):
    """Raised when registering as a secret agent with NetworkManager fails."""
