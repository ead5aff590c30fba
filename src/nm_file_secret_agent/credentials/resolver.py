"""Secret resolver: turns a connection request into secret values.

The resolver:
1. Rejects requests that demand new credentials (this agent is read-only)
2. Asks the mapping store which entries apply
3. Reads every matched entry's source file
4. Returns the secrets, or fails as a whole if any file is unreadable

Partial results are never returned. An empty result means nothing is
configured for the request, which is a successful outcome.
"""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import SecretStr

from nm_file_secret_agent.errors import SourceUnreadable, UnsupportedFlag
from nm_file_secret_agent.mapping.store import MappingStore
from nm_file_secret_agent.models import ConnectionRequest, MappingEntry, ResolvedSecret

logger = logging.getLogger(__name__)


class SecretResolver:
    """Resolves secrets for connection requests from a mapping store.

    Stateless: all context comes from the request and the store.
    """

    def __init__(self, store: MappingStore) -> None:
        self._store = store

    def resolve(self, request: ConnectionRequest) -> list[ResolvedSecret]:
        """Resolve all configured secrets that apply to *request*.

        Raises:
            UnsupportedFlag: If the request carries the request-new flag.
            SourceUnreadable: If any matched entry's source cannot be read.
        """
        if request.requests_new:
            raise UnsupportedFlag(
                "NetworkManager requested new credentials which cannot be "
                "provided by this agent"
            )

        entries = self._store.find_matches(request)
        if not entries:
            logger.debug(
                "No configured entry matches %s secrets of connection %s",
                request.setting_name,
                request.uuid,
            )
            return []

        return [read_secret(entry) for entry in entries]


def read_secret(entry: MappingEntry) -> ResolvedSecret:
    """Read *entry*'s source file fully into a ResolvedSecret.

    Raises:
        SourceUnreadable: If the file cannot be opened, read or decoded.
    """
    logger.debug("Reading secret %s from %s", entry.key, entry.source)
    try:
        # read_text() would translate newlines; content is passed on verbatim
        value = Path(entry.source).read_bytes().decode("utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise SourceUnreadable(entry.key, entry.source, e) from e

    return ResolvedSecret(key=entry.key, value=SecretStr(value))
