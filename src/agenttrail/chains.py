"""Link sessions that continue the same conversation into chains.

Assistants often split one task across several restarted transcript files
that open with the same prompt. Sessions in the same directory whose derived
titles match are grouped and numbered by creation time.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import TYPE_CHECKING, Iterable

from .derive import UNTITLED

if TYPE_CHECKING:
    from .sessions import Session

logger = logging.getLogger(__name__)


def chain_key(title: str) -> str:
    """Normalize a title for chain grouping (case and whitespace)."""
    return " ".join(title.split()).lower()


def link_chains(sessions: Iterable[Session]) -> list[list[Session]]:
    """Assign chain fields to sessions sharing a title within a directory.

    Sessions in singleton groups have their chain fields cleared.

    Returns:
        The chains found, each ordered by ascending timestamp.
    """
    groups: dict[tuple[str, str], list[Session]] = defaultdict(list)
    untitled = chain_key(UNTITLED)

    for session in sessions:
        session.chain_id = None
        session.chain_index = None
        session.chain_length = None
        key = chain_key(session.title)
        if not key or key == untitled:
            continue
        groups[(session.directory, key)].append(session)

    chains = []
    for (_directory, key), members in groups.items():
        if len(members) < 2:
            continue
        members.sort(key=lambda s: (s.timestamp or "", s.id))
        for index, session in enumerate(members):
            session.chain_id = key
            session.chain_index = index
            session.chain_length = len(members)
        chains.append(members)

    logger.debug(f"Linked {len(chains)} chains")
    return chains
