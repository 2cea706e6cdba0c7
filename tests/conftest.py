"""Shared fixtures for AgentTrail tests."""

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from agenttrail.config import ConfigSnapshot, ConfigStore, DirectoryProfile


def iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def user_text(text: str, timestamp: str | None = None, **extra) -> dict:
    record = {"type": "user", "message": {"role": "user", "content": [{"type": "text", "text": text}]}}
    if timestamp:
        record["timestamp"] = timestamp
    record.update(extra)
    return record


def assistant_blocks(blocks: list[dict], timestamp: str | None = None) -> dict:
    record = {"type": "assistant", "message": {"role": "assistant", "content": blocks}}
    if timestamp:
        record["timestamp"] = timestamp
    return record


def write_session(root: Path, project: str, session_id: str, records: list) -> Path:
    """Write records as a JSONL transcript under root/project/session_id.jsonl."""
    project_dir = root / project
    project_dir.mkdir(parents=True, exist_ok=True)
    path = project_dir / f"{session_id}.jsonl"
    lines = [r if isinstance(r, str) else json.dumps(r) for r in records]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


@pytest.fixture
def now() -> datetime:
    return datetime.now(timezone.utc)


@pytest.fixture
def simple_session_records(now):
    return [
        user_text("Hello, can you help me?", iso(now - timedelta(minutes=2))),
        assistant_blocks(
            [{"type": "text", "text": "Of course! What do you need?"}],
            iso(now - timedelta(minutes=1)),
        ),
    ]


@pytest.fixture
def session_with_tools_records(now):
    return [
        user_text("Write a hello world script", iso(now - timedelta(minutes=3))),
        assistant_blocks(
            [
                {"type": "text", "text": "Creating file hello.py"},
                {
                    "type": "tool_use",
                    "id": "toolu_1",
                    "name": "Write",
                    "input": {"file_path": "/repo/hello.py", "content": "print('hi')"},
                },
            ],
            iso(now - timedelta(minutes=2)),
        ),
        {
            "type": "user",
            "timestamp": iso(now - timedelta(minutes=1)),
            "message": {
                "role": "user",
                "content": [{"type": "tool_result", "tool_use_id": "toolu_1", "content": "File written"}],
            },
        },
    ]


@pytest.fixture
def projects_dir(tmp_path) -> Path:
    path = tmp_path / "projects"
    path.mkdir()
    return path


@pytest.fixture
def populated_dir(projects_dir, simple_session_records, session_with_tools_records) -> Path:
    """Two chained sessions in project-a and one tool session in project-b."""
    write_session(projects_dir, "project-a", "session-1", simple_session_records)
    write_session(projects_dir, "project-a", "session-2", simple_session_records)
    write_session(projects_dir, "project-b", "session-3", session_with_tools_records)
    return projects_dir


@pytest.fixture
def snapshot(populated_dir) -> ConfigSnapshot:
    return ConfigSnapshot(
        directories=(DirectoryProfile(path=str(populated_dir), label="Test", color="#fff"),),
    )


@pytest.fixture
def config_store(tmp_path, populated_dir) -> ConfigStore:
    store = ConfigStore(tmp_path / "config" / "config.json")
    store.save(
        ConfigSnapshot(
            directories=(DirectoryProfile(path=str(populated_dir), label="Test", color="#fff"),),
        )
    )
    return store
