"""Tests for the SessionTailer class."""

import json

import pytest

from agenttrail.tailer import SessionTailer, get_project_name, get_session_id
from agenttrail.transcript import TextBlock


def line(record: dict) -> str:
    return json.dumps(record) + "\n"


class TestSessionTailer:
    """Tests for SessionTailer."""

    def test_reads_existing_lines(self, tmp_path, simple_session_records):
        """Test that the first read returns every message in the file."""
        path = tmp_path / "session.jsonl"
        path.write_text("".join(line(r) for r in simple_session_records))

        tailer = SessionTailer(path)
        messages = tailer.read_new_lines()

        assert [m.type for m in messages] == ["user", "assistant"]
        assert tailer.position == path.stat().st_size

    def test_only_new_lines_after_first_read(self, tmp_path):
        """Test that subsequent reads return only appended messages."""
        path = tmp_path / "session.jsonl"
        path.write_text(line({"type": "user", "message": {"content": "one"}}))

        tailer = SessionTailer(path)
        assert len(tailer.read_new_lines()) == 1

        with open(path, "a") as f:
            f.write(line({"type": "assistant", "message": {"content": [{"type": "text", "text": "two"}]}}))

        messages = tailer.read_new_lines()
        assert len(messages) == 1
        assert messages[0].content == [TextBlock(text="two")]

        assert tailer.read_new_lines() == []

    def test_incomplete_line_is_buffered(self, tmp_path):
        """Test that a partially written line is held until it is complete."""
        path = tmp_path / "session.jsonl"
        full = json.dumps({"type": "user", "message": {"content": "partial then done"}})
        path.write_text(full[:10])

        tailer = SessionTailer(path)
        assert tailer.read_new_lines() == []
        assert tailer.buffer == full[:10].encode()

        with open(path, "a") as f:
            f.write(full[10:] + "\n")

        messages = tailer.read_new_lines()
        assert len(messages) == 1
        assert messages[0].content == [TextBlock(text="partial then done")]
        assert tailer.buffer == b""

    def test_malformed_line_is_skipped(self, tmp_path):
        path = tmp_path / "session.jsonl"
        path.write_text("{broken\n" + line({"type": "user", "message": {"content": "ok"}}))

        messages = SessionTailer(path).read_new_lines()
        assert len(messages) == 1

    def test_non_message_records_are_filtered(self, tmp_path):
        path = tmp_path / "session.jsonl"
        path.write_text(
            line({"type": "summary", "summary": "ignored"})
            + line({"type": "system", "data": "ignored"})
            + line({"type": "user", "message": {"content": "Hello"}})
        )
        messages = SessionTailer(path).read_new_lines()
        assert [m.type for m in messages] == ["user"]

    def test_missing_file_raises(self, tmp_path):
        tailer = SessionTailer(tmp_path / "gone.jsonl")
        with pytest.raises(OSError):
            tailer.read_new_lines()

    def test_codex_kind(self, tmp_path):
        path = tmp_path / "rollout.jsonl"
        path.write_text(
            line({"type": "session_meta", "payload": {"cwd": "/tmp"}})
            + line(
                {
                    "type": "response_item",
                    "payload": {
                        "type": "message",
                        "role": "assistant",
                        "content": [{"type": "output_text", "text": "Done"}],
                    },
                }
            )
        )
        messages = SessionTailer(path, kind="codex").read_new_lines()
        assert len(messages) == 1
        assert messages[0].type == "assistant"


class TestGetSessionId:
    def test_uses_file_stem(self, tmp_path):
        assert get_session_id(tmp_path / "abc-123.jsonl") == "abc-123"


class TestGetProjectName:
    """Tests for get_project_name."""

    def test_projects_marker(self):
        assert get_project_name("-Users-alice-projects-web-app") == "web-app"

    def test_home_fallback(self):
        assert get_project_name("-home-alice-webapp") == "webapp"

    def test_plain_folder_name(self):
        assert get_project_name("project-a") == "project-a"

    def test_url_encoded(self):
        assert get_project_name("-Users-me-repos-my%20app") == "my app"
