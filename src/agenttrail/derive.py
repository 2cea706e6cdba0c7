"""Derive status, titles, previews and tags from parsed messages."""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from pathlib import PurePath

from .transcript import (
    Message,
    TextBlock,
    ThinkingBlock,
    ToolResultBlock,
    ToolUseBlock,
)

# Sessions with no activity for this long are considered idle
IDLE_THRESHOLD = timedelta(minutes=5)

# Tools that block the assistant until the user answers
PENDING_INPUT_TOOLS = frozenset({"AskUserQuestion", "ExitPlanMode"})

# Tools whose file_path input names the file being changed
FILE_EDIT_TOOLS = frozenset({"Edit", "MultiEdit", "Write", "NotebookEdit"})

TITLE_MAX_LENGTH = 80
PREVIEW_MAX_LENGTH = 200
UNTITLED = "Untitled session"

STATUS_WORKING = "working"
STATUS_AWAITING = "awaiting"
STATUS_IDLE = "idle"

AUTO_TAG_PATTERNS: dict[str, re.Pattern] = {
    "debugging": re.compile(r"\b(bug|debug\w*|error|exception|traceback|crash\w*|fix\w*|broken)\b", re.I),
    "feature": re.compile(r"\b(implement\w*|feature|add support|new endpoint|build)\b", re.I),
    "refactoring": re.compile(r"\b(refactor\w*|clean ?up|restructur\w*|rename|simplif\w*)\b", re.I),
    "git": re.compile(r"\b(git|commit\w*|branch\w*|rebase|merge|pull request|cherry-pick)\b", re.I),
    "testing": re.compile(r"\b(tests?|testing|pytest|jest|vitest|unit test|coverage)\b", re.I),
    "docs": re.compile(r"\b(docs?|documentation|readme|docstrings?|changelog)\b", re.I),
    "config": re.compile(r"\b(config\w*|settings|\.env|yaml|toml|environment variables?)\b", re.I),
    "api": re.compile(r"\b(api|endpoints?|rest|graphql|http)\b", re.I),
    "ui": re.compile(r"\b(ui|css|frontend|component|layout|button|styl\w*)\b", re.I),
}

_DOC_SUFFIXES = (".md", ".rst", ".txt")
_CONFIG_SUFFIXES = (".json", ".yaml", ".yml", ".toml", ".ini", ".cfg", ".env")
_UI_SUFFIXES = (".css", ".scss", ".html", ".jsx", ".tsx", ".vue", ".svelte")


def parse_timestamp(value: str | datetime | None) -> datetime | None:
    """Parse an ISO 8601 timestamp into an aware datetime (UTC if naive)."""
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _user_texts(message: Message) -> list[str]:
    return [b.text for b in message.content if isinstance(b, TextBlock)]


def _last_timestamp(messages: list[Message]) -> datetime | None:
    for message in reversed(messages):
        ts = parse_timestamp(message.timestamp)
        if ts is not None:
            return ts
    return None


def _pending_question(messages: list[Message]) -> bool:
    """Check whether the latest assistant turn asked something still unanswered."""
    for index in range(len(messages) - 1, -1, -1):
        message = messages[index]
        if message.type != "assistant":
            continue
        pending_ids = {
            block.id
            for block in message.content
            if isinstance(block, ToolUseBlock) and block.name in PENDING_INPUT_TOOLS
        }
        if not pending_ids:
            return False
        for later in messages[index + 1 :]:
            for block in later.content:
                if isinstance(block, ToolResultBlock) and block.tool_use_id in pending_ids:
                    pending_ids.discard(block.tool_use_id)
        return bool(pending_ids)
    return False


def determine_session_status(
    messages: list[Message],
    last_activity: str | datetime | None = None,
    now: datetime | None = None,
) -> str:
    """Classify a session as awaiting input, idle or working.

    Args:
        messages: Parsed messages in file order.
        last_activity: Override for the time of the last activity. Defaults
            to the timestamp of the last message that has one.
        now: Reference time, defaults to the current UTC time.

    Returns:
        "awaiting", "idle" or "working".
    """
    if _pending_question(messages):
        return STATUS_AWAITING

    activity = parse_timestamp(last_activity) if last_activity is not None else _last_timestamp(messages)
    if activity is None:
        return STATUS_WORKING

    now = parse_timestamp(now) if now is not None else datetime.now(timezone.utc)
    if now - activity >= IDLE_THRESHOLD:
        return STATUS_IDLE
    return STATUS_WORKING


def extract_first_user_message(messages: list[Message]) -> str | None:
    """Get the first human-written prompt, skipping slash commands."""
    for message in messages:
        if message.type != "user":
            continue
        text = "\n".join(_user_texts(message)).strip()
        if not text or text.startswith("/"):
            continue
        return text
    return None


def _last_edited_file(messages: list[Message]) -> tuple[str, str] | None:
    found = None
    for message in messages:
        if message.type != "assistant":
            continue
        for block in message.content:
            if isinstance(block, ToolUseBlock) and block.name in FILE_EDIT_TOOLS:
                file_path = block.input.get("file_path") or block.input.get("notebook_path")
                if file_path:
                    found = (block.name, PurePath(file_path).name)
    return found


def _one_line(text: str, limit: int) -> str:
    text = " ".join(text.split())
    if len(text) > limit:
        return text[: limit - 3].rstrip() + "..."
    return text


def generate_session_summary(messages: list[Message]) -> str:
    """Build a short description from the first prompt and the edited file."""
    first = extract_first_user_message(messages)
    edited = _last_edited_file(messages)

    summary = _one_line(first, TITLE_MAX_LENGTH) if first else ""
    if edited:
        tool_name, file_name = edited
        note = f"{tool_name} {file_name}"
        summary = f"{summary} ({note})" if summary else note
    return summary


def derive_title(messages: list[Message]) -> str:
    first = extract_first_user_message(messages)
    if first:
        return _one_line(first, TITLE_MAX_LENGTH)
    return generate_session_summary(messages) or UNTITLED


def derive_preview(messages: list[Message]) -> str:
    first = extract_first_user_message(messages)
    return _one_line(first, PREVIEW_MAX_LENGTH) if first else ""


def detect_tags(messages: list[Message]) -> set[str]:
    """Guess topic tags from user prompts and tool usage."""
    corpus: list[str] = []
    tags: set[str] = set()

    for message in messages:
        for block in message.content:
            if isinstance(block, TextBlock):
                if message.type == "user":
                    corpus.append(block.text)
            elif isinstance(block, ToolUseBlock):
                command = block.input.get("command")
                if isinstance(command, str):
                    corpus.append(command)
                file_path = block.input.get("file_path")
                if block.name in FILE_EDIT_TOOLS and isinstance(file_path, str):
                    lowered = file_path.lower()
                    if lowered.endswith(_DOC_SUFFIXES):
                        tags.add("docs")
                    elif lowered.endswith(_CONFIG_SUFFIXES):
                        tags.add("config")
                    elif lowered.endswith(_UI_SUFFIXES):
                        tags.add("ui")
                    if "test" in PurePath(lowered).name:
                        tags.add("testing")
            elif isinstance(block, (ToolResultBlock, ThinkingBlock)):
                continue
            else:
                raise TypeError(f"Unknown content block: {block!r}")

    text = "\n".join(corpus)
    for tag, pattern in AUTO_TAG_PATTERNS.items():
        if pattern.search(text):
            tags.add(tag)
    return tags
