"""Mapping store: the configured table of match rules.

The store is built once from the config file and never changes afterwards.
Entries keep their configured order, which is also the order in which
matches are returned.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator

from nm_file_secret_agent.models import ConnectionRequest, MappingEntry


class MappingStore:
    """Immutable, ordered collection of mapping entries."""

    def __init__(self, entries: Iterable[MappingEntry] = ()) -> None:
        self._entries: tuple[MappingEntry, ...] = tuple(entries)

    @property
    def entries(self) -> list[MappingEntry]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[MappingEntry]:
        return iter(self._entries)

    def find_matches(self, request: ConnectionRequest) -> list[MappingEntry]:
        """Return every entry that applies to *request*, in configured order.

        Returns an empty list when nothing matches.
        """
        return [entry for entry in self._entries if entry_matches(entry, request)]


def entry_matches(entry: MappingEntry, request: ConnectionRequest) -> bool:
    """Check if all populated match fields of *entry* equal the request's.

    Unset fields match anything. An entry with ``match_iface`` set never
    matches a request that carries no interface name.
    """
    if not _field_matches(entry.match_id, request.id):
        return False

    if not _field_matches(entry.match_uuid, request.uuid):
        return False

    if not _field_matches(entry.match_type, request.type):
        return False

    if not _field_matches(entry.match_iface, request.iface_name):
        return False

    return _field_matches(entry.match_setting, request.setting_name)


def _field_matches(expected: str | None, actual: str | None) -> bool:
    if expected is None:
        return True
    return actual is not None and actual == expected
