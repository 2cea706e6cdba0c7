"""Tests for multi-directory session discovery."""

import json
import os
from datetime import timedelta

import pytest

from agenttrail.config import ConfigSnapshot, DirectoryProfile
from agenttrail.sessions import SessionAggregator, format_timestamp

from conftest import iso, user_text, write_session


@pytest.fixture
def aggregator(snapshot):
    return SessionAggregator(snapshot)


class TestDiscoverSessions:
    """Tests for SessionAggregator.discover_sessions."""

    def test_finds_all_sessions(self, aggregator):
        sessions = aggregator.discover_sessions()
        assert sorted(s.id for s in sessions) == ["session-1", "session-2", "session-3"]

    def test_session_fields(self, aggregator, populated_dir, simple_session_records):
        """Test that derived fields are filled from the transcript."""
        session = next(s for s in aggregator.discover_sessions() if s.id == "session-1")

        assert session.directory == str(populated_dir)
        assert session.directory_label == "Test"
        assert session.directory_color == "#fff"
        assert session.project == "project-a"
        assert session.project_name == "project-a"
        assert session.title == "Hello, can you help me?"
        assert session.preview == "Hello, can you help me?"
        assert session.timestamp == simple_session_records[0]["timestamp"]
        assert session.status == "working"
        assert session.message_count == 2
        assert session.messages == []
        assert session.is_pinned is False

    def test_same_titles_are_chained(self, aggregator):
        sessions = {s.id: s for s in aggregator.discover_sessions()}

        assert sessions["session-1"].chain_id == "hello, can you help me?"
        assert sessions["session-2"].chain_id == sessions["session-1"].chain_id
        assert {sessions["session-1"].chain_index, sessions["session-2"].chain_index} == {0, 1}
        assert sessions["session-1"].chain_length == 2
        assert sessions["session-3"].chain_id is None
        assert "chainId" not in sessions["session-3"].to_dict()

    def test_sorted_by_last_modified(self, aggregator, populated_dir):
        base = 1_700_000_000
        os.utime(populated_dir / "project-a" / "session-1.jsonl", (base, base + 30))
        os.utime(populated_dir / "project-a" / "session-2.jsonl", (base, base + 10))
        os.utime(populated_dir / "project-b" / "session-3.jsonl", (base, base + 20))

        ids = [s.id for s in aggregator.discover_sessions()]
        assert ids == ["session-1", "session-3", "session-2"]

    def test_idle_status_uses_file_mtime(self, snapshot, now):
        aggregator = SessionAggregator(snapshot, now=now + timedelta(minutes=10))
        assert {s.status for s in aggregator.discover_sessions()} == {"idle"}

    def test_awaiting_status(self, projects_dir, snapshot, now):
        write_session(
            projects_dir,
            "project-c",
            "asking",
            [
                user_text("Set up a database", iso(now)),
                {
                    "type": "assistant",
                    "timestamp": iso(now),
                    "message": {
                        "content": [
                            {"type": "tool_use", "id": "q1", "name": "AskUserQuestion", "input": {}},
                        ]
                    },
                },
            ],
        )
        session = next(s for s in SessionAggregator(snapshot).discover_sessions() if s.id == "asking")
        assert session.status == "awaiting"

    def test_sidechain_sessions_are_excluded(self, projects_dir, snapshot):
        write_session(
            projects_dir,
            "project-a",
            "sidechain",
            [
                {"type": "summary", "summary": "x"},
                user_text("Sub task", isSidechain=True),
            ],
        )
        ids = {s.id for s in SessionAggregator(snapshot).discover_sessions()}
        assert "sidechain" not in ids

    def test_sidechain_after_leading_metadata_is_excluded(self, projects_dir, snapshot):
        """Test that snapshot and queue records do not define the session."""
        write_session(
            projects_dir,
            "project-a",
            "side",
            [
                {"type": "file-history-snapshot", "messageId": "m1", "snapshot": {}},
                {"type": "queue-operation", "operation": "enqueue"},
                user_text("Sub task", isSidechain=True),
                {
                    "type": "assistant",
                    "isSidechain": True,
                    "message": {"content": [{"type": "text", "text": "Done"}]},
                },
            ],
        )
        ids = {s.id for s in SessionAggregator(snapshot).discover_sessions()}
        assert "side" not in ids

    def test_later_sidechain_records_keep_session(self, projects_dir, snapshot):
        write_session(
            projects_dir,
            "project-a",
            "mainline",
            [
                user_text("Main task", isSidechain=False),
                user_text("Sub task", isSidechain=True),
            ],
        )
        ids = {s.id for s in SessionAggregator(snapshot).discover_sessions()}
        assert "mainline" in ids

    def test_agent_files_and_empty_sessions_are_skipped(self, projects_dir, snapshot):
        write_session(projects_dir, "project-a", "agent-abc", [user_text("agent work")])
        write_session(projects_dir, "project-a", "empty", [{"type": "summary", "summary": "only"}])
        ids = {s.id for s in SessionAggregator(snapshot).discover_sessions()}
        assert "agent-abc" not in ids
        assert "empty" not in ids

    def test_malformed_lines_do_not_hide_session(self, projects_dir, snapshot):
        write_session(projects_dir, "project-a", "messy", ["{oops", user_text("Still here")])
        session = next(s for s in SessionAggregator(snapshot).discover_sessions() if s.id == "messy")
        assert session.title == "Still here"

    def test_missing_directory_is_skipped(self, populated_dir, tmp_path, caplog):
        config = ConfigSnapshot(
            directories=(
                DirectoryProfile(path=str(tmp_path / "nowhere")),
                DirectoryProfile(path=str(populated_dir)),
            )
        )
        sessions = SessionAggregator(config).discover_sessions()
        assert len(sessions) == 3
        assert "Session directory not found" in caplog.text

    def test_disabled_directory_is_skipped(self, populated_dir):
        config = ConfigSnapshot(directories=(DirectoryProfile(path=str(populated_dir), enabled=False),))
        assert SessionAggregator(config).discover_sessions() == []

    def test_multiple_directories(self, populated_dir, tmp_path, simple_session_records):
        other = tmp_path / "other"
        write_session(other, "project-z", "elsewhere", simple_session_records)
        config = ConfigSnapshot(
            directories=(
                DirectoryProfile(path=str(populated_dir), label="One"),
                DirectoryProfile(path=str(other), label="Two"),
            )
        )
        sessions = {s.id: s for s in SessionAggregator(config).discover_sessions()}
        assert sessions["elsewhere"].directory_label == "Two"
        # Same title in a different directory is a separate chain
        assert sessions["elsewhere"].chain_id is None

    def test_pins_and_custom_tags(self, populated_dir):
        config = ConfigSnapshot(
            directories=(DirectoryProfile(path=str(populated_dir)),),
            pins=frozenset({"session-3"}),
            custom_tags={"session-3": ("important",)},
        )
        session = next(s for s in SessionAggregator(config).discover_sessions() if s.id == "session-3")
        assert session.is_pinned is True
        assert "important" in session.tags

    def test_codex_profile(self, tmp_path):
        root = tmp_path / "codex"
        write_session(
            root,
            "2025/06/01",
            "rollout-2025-06-01-abc",
            [
                {"type": "session_meta", "payload": {"id": "abc", "cwd": "/home/me/work/webapp"}},
                {
                    "type": "response_item",
                    "timestamp": "2025-06-01T10:00:00.000Z",
                    "payload": {
                        "type": "message",
                        "role": "user",
                        "content": [{"type": "input_text", "text": "Add a login page"}],
                    },
                },
            ],
        )
        config = ConfigSnapshot(directories=(DirectoryProfile(path=str(root), type="codex"),))
        [session] = SessionAggregator(config).discover_sessions()

        assert session.id == "rollout-2025-06-01-abc"
        assert session.project == "/home/me/work/webapp"
        assert session.project_name == "webapp"
        assert session.title == "Add a login page"
        assert session.timestamp == "2025-06-01T10:00:00.000Z"

    def test_include_messages(self, aggregator):
        sessions = aggregator.discover_sessions(include_messages=True)
        assert all(len(s.messages) == s.message_count for s in sessions)


class TestSessionToDict:
    def test_round_trip_through_json(self, snapshot, now):
        """Test that serialized sessions are stable for a fixed reference time."""
        first = [s.to_dict() for s in SessionAggregator(snapshot, now=now).discover_sessions()]
        second = [s.to_dict() for s in SessionAggregator(snapshot, now=now).discover_sessions()]
        assert json.loads(json.dumps(first)) == second

    def test_keys(self, aggregator):
        data = next(s for s in aggregator.discover_sessions() if s.id == "session-1").to_dict()
        assert {
            "id",
            "directory",
            "directoryLabel",
            "directoryColor",
            "project",
            "projectName",
            "title",
            "timestamp",
            "lastModified",
            "status",
            "preview",
            "tags",
            "isPinned",
            "messageCount",
            "chainId",
            "chainIndex",
            "chainLength",
        } == set(data)


class TestGetSession:
    def test_keeps_chain_fields(self, aggregator):
        session = aggregator.get_session("session-2")
        assert session.chain_id == "hello, can you help me?"
        assert session.chain_length == 2
        assert len(session.messages) == session.message_count == 2

    def test_sidechain_is_not_found(self, projects_dir, aggregator):
        write_session(projects_dir, "project-a", "side", [user_text("Sub task", isSidechain=True)])
        assert aggregator.get_session("side") is None

    def test_loads_messages(self, aggregator):
        session = aggregator.get_session("session-3")
        assert session.message_count == 3
        data = session.to_dict(include_messages=True)
        assert data["messages"][1]["content"][1]["name"] == "Write"

    def test_unknown_id(self, aggregator):
        assert aggregator.get_session("missing") is None

    def test_locate(self, aggregator, populated_dir):
        location = aggregator.locate("session-3")
        assert location.path == populated_dir / "project-b" / "session-3.jsonl"
        assert location.kind == "claude"
        assert aggregator.locate("missing") is None


class TestAggregates:
    """Tests for project, directory and tag aggregates."""

    def test_project_list(self, aggregator):
        assert aggregator.get_project_list() == [
            {"name": "project-a", "path": "project-a", "count": 2},
            {"name": "project-b", "path": "project-b", "count": 1},
        ]

    def test_directory_list(self, aggregator, populated_dir):
        [entry] = aggregator.get_directory_list()
        assert entry["path"] == str(populated_dir)
        assert entry["label"] == "Test"
        assert entry["count"] == 3

    def test_directory_list_includes_disabled_profiles(self, populated_dir, tmp_path):
        config = ConfigSnapshot(
            directories=(
                DirectoryProfile(path=str(populated_dir), label="On"),
                DirectoryProfile(path=str(tmp_path / "off"), label="Off", enabled=False),
            )
        )
        entries = {e["label"]: e for e in SessionAggregator(config).get_directory_list()}
        assert entries["On"]["count"] == 3
        assert entries["Off"]["enabled"] is False
        assert entries["Off"]["count"] == 0

    def test_tag_counts(self, populated_dir):
        config = ConfigSnapshot(
            directories=(DirectoryProfile(path=str(populated_dir)),),
            custom_tags={"session-1": ("review",), "session-3": ("review", "urgent")},
        )
        assert SessionAggregator(config).get_tag_counts() == {"review": 2, "urgent": 1}


class TestFormatTimestamp:
    def test_millisecond_utc(self, now):
        value = format_timestamp(now)
        assert value.endswith("Z")
        assert len(value.split(".")[1]) == 4
