"""Session discovery across all configured directory profiles.

Each discovery pass scans the filesystem from scratch and returns fresh
Session objects; nothing is cached between calls, so concurrent callers never
share mutable state. Pins and custom tags come from the ConfigSnapshot the
aggregator was constructed with.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path, PurePath
from typing import Iterator

from .chains import link_chains
from .config import ConfigSnapshot, DirectoryProfile
from .derive import (
    derive_preview,
    derive_title,
    detect_tags,
    determine_session_status,
    parse_timestamp,
)
from .tailer import get_project_name, get_session_id
from .transcript import Message, parse_transcript, read_session_meta

logger = logging.getLogger(__name__)


class SessionNotFoundError(LookupError):
    """Raised when no session file matches a session id."""


def format_timestamp(dt: datetime) -> str:
    """Format a datetime as a UTC ISO 8601 string with millisecond precision."""
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass
class SessionLocation:
    """Where a session's transcript lives."""

    path: Path
    profile: DirectoryProfile

    @property
    def kind(self) -> str:
        return self.profile.type


@dataclass
class Session:
    """A transcript file with its derived metadata."""

    id: str
    path: Path
    directory: str
    project: str
    project_name: str
    title: str
    timestamp: str
    last_modified: str
    status: str
    preview: str = ""
    directory_label: str = ""
    directory_color: str = ""
    tags: list[str] = field(default_factory=list)
    is_pinned: bool = False
    message_count: int = 0
    messages: list[Message] = field(default_factory=list)
    chain_id: str | None = None
    chain_index: int | None = None
    chain_length: int | None = None

    def to_dict(self, include_messages: bool = False) -> dict:
        """Convert to dictionary for JSON serialization."""
        data = {
            "id": self.id,
            "directory": self.directory,
            "directoryLabel": self.directory_label,
            "directoryColor": self.directory_color,
            "project": self.project,
            "projectName": self.project_name,
            "title": self.title,
            "timestamp": self.timestamp,
            "lastModified": self.last_modified,
            "status": self.status,
            "preview": self.preview,
            "tags": self.tags,
            "isPinned": self.is_pinned,
            "messageCount": self.message_count,
        }
        if self.chain_id is not None:
            data["chainId"] = self.chain_id
            data["chainIndex"] = self.chain_index
            data["chainLength"] = self.chain_length
        if include_messages:
            data["messages"] = [m.to_dict() for m in self.messages]
        return data


class SessionAggregator:
    """Builds the session index for one configuration snapshot."""

    def __init__(self, config: ConfigSnapshot, now: datetime | None = None):
        self.config = config
        self.now = now

    def iter_session_files(self) -> Iterator[SessionLocation]:
        """Find transcript files in every enabled profile.

        Sub-agent transcripts (``agent-*.jsonl``) are not top-level sessions.
        Profiles that are missing or unreadable are logged and skipped.
        """
        for profile in self.config.enabled_directories:
            root = Path(profile.path).expanduser()
            if not root.is_dir():
                logger.warning(f"Session directory not found: {root}")
                continue
            try:
                files = sorted(root.rglob("*.jsonl"))
            except OSError as e:
                logger.warning(f"Failed to scan {root}: {e}")
                continue
            for path in files:
                if path.name.startswith("agent-"):
                    continue
                yield SessionLocation(path=path, profile=profile)

    def locate(self, session_id: str) -> SessionLocation | None:
        for location in self.iter_session_files():
            if get_session_id(location.path) == session_id:
                return location
        return None

    def _project_for(self, location: SessionLocation, cwd: str | None) -> tuple[str, str]:
        if cwd:
            return cwd, PurePath(cwd).name or cwd
        root = Path(location.profile.path).expanduser()
        try:
            relative = location.path.parent.relative_to(root).as_posix()
        except ValueError:
            relative = location.path.parent.name
        if relative in ("", "."):
            return ".", root.name
        return relative, get_project_name(PurePath(relative).parts[0])

    def load_session(self, location: SessionLocation, include_messages: bool = False) -> Session | None:
        """Parse one transcript into a Session.

        Returns None for sidechain transcripts, transcripts without any
        messages, and files that cannot be read.
        """
        path = location.path
        try:
            raw = path.read_text(encoding="utf-8", errors="replace")
            mtime = path.stat().st_mtime
        except OSError as e:
            logger.warning(f"Failed to read session file {path}: {e}")
            return None

        meta = read_session_meta(raw, location.kind)
        if meta.is_sidechain:
            logger.debug(f"Skipping sidechain session: {path}")
            return None

        messages = parse_transcript(raw, location.kind)
        if not messages:
            logger.debug(f"Skipping session without messages: {path}")
            return None

        session_id = get_session_id(path)
        modified = datetime.fromtimestamp(mtime, tz=timezone.utc)
        created = next(
            (ts for ts in (parse_timestamp(m.timestamp) for m in messages) if ts is not None),
            modified,
        )
        project, project_name = self._project_for(location, meta.cwd)
        tags = detect_tags(messages) | set(self.config.get_custom_tags(session_id))

        return Session(
            id=session_id,
            path=path,
            directory=location.profile.path,
            directory_label=location.profile.label,
            directory_color=location.profile.color,
            project=project,
            project_name=project_name,
            title=derive_title(messages),
            timestamp=format_timestamp(created),
            last_modified=format_timestamp(modified),
            status=determine_session_status(messages, last_activity=modified, now=self.now),
            preview=derive_preview(messages),
            tags=sorted(tags),
            is_pinned=self.config.is_pinned(session_id),
            message_count=len(messages),
            messages=messages if include_messages else [],
        )

    def discover_sessions(self, include_messages: bool = False) -> list[Session]:
        """Scan all enabled profiles and build the session index.

        Returns:
            Sessions sorted by last modification time, newest first.
        """
        sessions = []
        for location in self.iter_session_files():
            session = self.load_session(location, include_messages=include_messages)
            if session is not None:
                sessions.append(session)

        link_chains(sessions)
        sessions.sort(key=lambda s: (s.last_modified, s.id), reverse=True)
        logger.debug(f"Discovered {len(sessions)} sessions")
        return sessions

    def load_messages(self, session: Session) -> list[Message]:
        """Re-read a session's transcript and return all of its messages.

        Raises:
            OSError: If the file can no longer be read.
        """
        kind = "claude"
        for profile in self.config.directories:
            if profile.path == session.directory:
                kind = profile.type
                break
        raw = session.path.read_text(encoding="utf-8", errors="replace")
        return parse_transcript(raw, kind)

    def get_session(self, session_id: str) -> Session | None:
        """Get one session with its full message list.

        Chains never cross directory profiles, so only the session's own
        profile is scanned to fill in its chain fields.
        """
        location = self.locate(session_id)
        if location is None:
            return None
        session = self.load_session(location, include_messages=True)
        if session is None:
            return None

        siblings = [
            self.load_session(other)
            for other in self.iter_session_files()
            if other.profile.path == location.profile.path and other.path != location.path
        ]
        link_chains([session] + [s for s in siblings if s is not None])
        return session

    def get_project_list(self, sessions: list[Session] | None = None) -> list[dict]:
        """Count sessions per project."""
        if sessions is None:
            sessions = self.discover_sessions()
        projects: dict[str, dict] = {}
        for session in sessions:
            entry = projects.setdefault(
                session.project,
                {"name": session.project_name, "path": session.project, "count": 0},
            )
            entry["count"] += 1
        return sorted(projects.values(), key=lambda p: (-p["count"], p["name"]))

    def get_directory_list(self, sessions: list[Session] | None = None) -> list[dict]:
        """Count sessions per directory profile.

        Disabled profiles are listed too, with a count of 0, so they can be
        re-enabled from the same list.
        """
        if sessions is None:
            sessions = self.discover_sessions()
        counts = Counter(s.directory for s in sessions)
        return [
            {**profile.to_dict(), "count": counts.get(profile.path, 0) if profile.enabled else 0}
            for profile in self.config.directories
        ]

    def get_tag_counts(self, sessions: list[Session] | None = None) -> dict[str, int]:
        """Count sessions per tag (auto-detected and custom)."""
        if sessions is None:
            sessions = self.discover_sessions()
        counts = Counter(tag for s in sessions for tag in s.tags)
        return dict(sorted(counts.items(), key=lambda item: (-item[1], item[0])))
