"""Search over the session index.

Quick search matches metadata that discovery already produced (title,
project name, tags). Deep search also re-reads each transcript and matches
the text of every message, including tool inputs and outputs. Both are plain
case-insensitive substring matches.
"""

from __future__ import annotations

import logging

from .sessions import Session, SessionAggregator
from .transcript import message_text

logger = logging.getLogger(__name__)

SEARCH_MODES = ("quick", "deep")


def matches_metadata(session: Session, needle: str) -> bool:
    """Check title, project name and tags for a lowercased needle."""
    if needle in session.title.lower():
        return True
    if needle in session.project_name.lower():
        return True
    return any(needle in tag.lower() for tag in session.tags)


def matches_content(aggregator: SessionAggregator, session: Session, needle: str) -> bool:
    """Check every message of a session for a lowercased needle.

    Raises:
        OSError: If the transcript can no longer be read.
    """
    messages = session.messages or aggregator.load_messages(session)
    return any(needle in message_text(m).lower() for m in messages)


def search_sessions(
    aggregator: SessionAggregator,
    query: str,
    mode: str = "quick",
    sessions: list[Session] | None = None,
) -> list[Session]:
    """Find sessions matching a query.

    Args:
        aggregator: Aggregator used for discovery and for re-reading files.
        query: Substring to look for (case-insensitive). A blank query
            matches everything.
        mode: "quick" for metadata only, "deep" to include message content.
        sessions: Already-discovered sessions; discovered fresh if omitted.

    Returns:
        Matching sessions in index order.

    Raises:
        ValueError: If mode is not "quick" or "deep".
    """
    if mode not in SEARCH_MODES:
        raise ValueError(f"Unknown search mode: {mode}")

    if sessions is None:
        sessions = aggregator.discover_sessions()

    needle = query.strip().lower()
    if not needle:
        return list(sessions)

    results = []
    for session in sessions:
        if matches_metadata(session, needle):
            results.append(session)
            continue
        if mode != "deep":
            continue
        try:
            if matches_content(aggregator, session, needle):
                results.append(session)
        except OSError as e:
            # File vanished or became unreadable mid-scan
            logger.warning(f"Skipping {session.id} in deep search: {e}")
    return results
