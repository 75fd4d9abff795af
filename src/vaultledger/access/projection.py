"""Event projection — fold registry events into one principal's access set.

Pure functions over ordered event lists; no I/O. The resolver feeds them
whatever slice of history it managed to scan, starting from an earlier
projection when it has one, so incremental scans and full rescans produce
the same answer for the same events.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from vaultledger.models.access import EventType, LedgerEvent


@dataclass(frozen=True)
class PrincipalProjection:
    """Files a principal can read (members) and the subset it owns.

    Owned files are members permanently: the registry never lets an owner
    be revoked, so a revoke event naming the owner is ignored here too.
    """
    members: frozenset[str] = frozenset()
    owned: frozenset[str] = frozenset()


EMPTY_PROJECTION = PrincipalProjection()


def fold_principal_events(
    principal: str,
    events: Iterable[LedgerEvent],
    start: PrincipalProjection = EMPTY_PROJECTION,
) -> PrincipalProjection:
    """Apply events, in ledger order, to start and return the new projection.

    Events naming other principals are ignored. Input order does not
    matter: events are sorted by (block_number, log_index) first.
    """
    members = set(start.members)
    owned = set(start.owned)

    for event in sorted(e for e in events if e.principal == principal):
        if event.event_type == EventType.FILE_REGISTERED:
            owned.add(event.file_hash)
            members.add(event.file_hash)
        elif event.event_type == EventType.ACCESS_GRANTED:
            members.add(event.file_hash)
        elif event.event_type == EventType.ACCESS_REVOKED:
            if event.file_hash not in owned:
                members.discard(event.file_hash)

    return PrincipalProjection(members=frozenset(members), owned=frozenset(owned))
