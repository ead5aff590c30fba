"""Settings encoder: shapes flat secrets into NetworkManager settings.

NetworkManager expects the secrets of one setting as a property map. For
most settings that is simply ``key -> value``. WireGuard peers are the
exception: peer secrets live in a list of per-peer property maps, each
identified by its ``public-key`` property.

The encoders return plain Python values (strings, lists, dicts); wrapping
them into bus variants is the bus layer's job.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import Any

from nm_file_secret_agent.models import ResolvedSecret

logger = logging.getLogger(__name__)

WIREGUARD_SETTING = "wireguard"
PEERS_KEY = "peers"
PEER_PUBLIC_KEY = "public-key"

SettingsMap = dict[str, Any]
Encoder = Callable[[Sequence[ResolvedSecret]], tuple[SettingsMap, set[str]]]


def encode_generic(secrets: Sequence[ResolvedSecret]) -> tuple[SettingsMap, set[str]]:
    """Map each secret's key to its value, without interpreting dots."""
    settings: SettingsMap = {secret.key: secret.reveal() for secret in secrets}
    return settings, set(settings)


def encode_wireguard(secrets: Sequence[ResolvedSecret]) -> tuple[SettingsMap, set[str]]:
    """Encode WireGuard secrets, routing ``peers.<pubkey>.<subkey>`` keys.

    Peer keys end up in ``settings["peers"]``: a list of property maps
    sorted by public key, each carrying ``public-key``. Any other key,
    including dotted keys of a different shape, goes to the top level.
    """
    settings: SettingsMap = {}
    inserted_keys: set[str] = set()
    peers: dict[str, dict[str, str]] = {}

    for secret in secrets:
        parts = secret.key.split(".")
        if len(parts) == 3 and parts[0] == PEERS_KEY:
            _, pubkey, subkey = parts
            peers.setdefault(pubkey, {})[subkey] = secret.reveal()
        else:
            settings[secret.key] = secret.reveal()
        inserted_keys.add(secret.key)

    if peers:
        if PEERS_KEY in settings:
            logger.warning(
                "Configured key %s.%s is replaced by the per-peer secrets",
                WIREGUARD_SETTING,
                PEERS_KEY,
            )
        settings[PEERS_KEY] = [
            {**peers[pubkey], PEER_PUBLIC_KEY: pubkey} for pubkey in sorted(peers)
        ]

    return settings, inserted_keys


class SettingsEncoder:
    """Selects the encoder for a setting name and applies it.

    Settings without a registered encoder use :func:`encode_generic`.
    """

    def __init__(self, encoders: dict[str, Encoder] | None = None) -> None:
        self._encoders: dict[str, Encoder] = {WIREGUARD_SETTING: encode_wireguard}
        if encoders:
            self._encoders.update(encoders)

    def encoder_for(self, setting_name: str) -> Encoder:
        return self._encoders.get(setting_name, encode_generic)

    def encode(
        self,
        setting_name: str,
        secrets: Sequence[ResolvedSecret],
    ) -> tuple[SettingsMap, set[str]]:
        """Encode *secrets* for *setting_name*.

        Returns the settings map and the set of configured keys that were
        inserted into it.
        """
        return self.encoder_for(setting_name)(secrets)
