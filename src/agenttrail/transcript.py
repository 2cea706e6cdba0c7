"""Transcript parsing for Claude Code and Codex session logs.

Converts raw JSONL transcript text into an ordered list of Message objects
with a closed set of content block types. Claude Code entries carry
``message.content`` directly; Codex rollout entries wrap their content in a
``response_item`` payload. Both are normalized to the same shape here and
consumed by derivation, search and the live stream.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Union

logger = logging.getLogger(__name__)

# Markup injected by the harness into user turns; never part of the conversation
_SYSTEM_TAGS = ("system-reminder",)
_CODEX_SYSTEM_TAGS = ("environment_context", "user_instructions")


def _tag_pattern(tags: tuple[str, ...]) -> re.Pattern:
    names = "|".join(re.escape(t) for t in tags)
    return re.compile(rf"<({names})>[\s\S]*?</\1>")


_SYSTEM_PATTERN = _tag_pattern(_SYSTEM_TAGS)
_CODEX_SYSTEM_PATTERN = _tag_pattern(_SYSTEM_TAGS + _CODEX_SYSTEM_TAGS)


@dataclass(frozen=True)
class TextBlock:
    text: str

    def to_dict(self) -> dict:
        return {"type": "text", "text": self.text}


@dataclass(frozen=True)
class ToolUseBlock:
    name: str
    id: str
    input: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"type": "tool_use", "name": self.name, "id": self.id, "input": self.input}


@dataclass(frozen=True)
class ToolResultBlock:
    tool_use_id: str
    content: Any = None  # string or list of content parts
    is_error: bool = False

    def to_dict(self) -> dict:
        return {
            "type": "tool_result",
            "tool_use_id": self.tool_use_id,
            "content": self.content,
            "is_error": self.is_error,
        }


@dataclass(frozen=True)
class ThinkingBlock:
    thinking: str

    def to_dict(self) -> dict:
        return {"type": "thinking", "thinking": self.thinking}


ContentBlock = Union[TextBlock, ToolUseBlock, ToolResultBlock, ThinkingBlock]


@dataclass
class Message:
    """A cleaned user or assistant turn."""

    type: str  # "user" | "assistant"
    content: list[ContentBlock]
    timestamp: str | None = None

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "content": [block.to_dict() for block in self.content],
            "timestamp": self.timestamp,
        }


def clean_text(text: str, kind: str = "claude") -> str:
    """Strip injected system markup from a text block and trim it."""
    pattern = _CODEX_SYSTEM_PATTERN if kind == "codex" else _SYSTEM_PATTERN
    return pattern.sub("", text).strip()


def block_text(block: ContentBlock, include_tools: bool = True) -> str:
    """Get the searchable text of a content block."""
    if isinstance(block, TextBlock):
        return block.text
    elif isinstance(block, ThinkingBlock):
        return block.thinking
    elif isinstance(block, ToolUseBlock):
        if not include_tools:
            return ""
        return f"{block.name} {json.dumps(block.input, ensure_ascii=False)}"
    elif isinstance(block, ToolResultBlock):
        if not include_tools:
            return ""
        return _flatten_result_content(block.content)
    raise TypeError(f"Unknown content block: {block!r}")


def message_text(message: Message, include_tools: bool = True) -> str:
    """Join the text of all blocks in a message."""
    parts = (block_text(b, include_tools) for b in message.content)
    return "\n".join(p for p in parts if p)


def _flatten_result_content(content: Any) -> str:
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        texts = []
        for part in content:
            if isinstance(part, dict):
                if part.get("type") == "text":
                    texts.append(part.get("text", ""))
            elif isinstance(part, str):
                texts.append(part)
        return "\n".join(texts)
    return json.dumps(content, ensure_ascii=False)


# ===== Claude Code =====


def _claude_block(raw: Any) -> ContentBlock | None:
    if not isinstance(raw, dict):
        return None

    block_type = raw.get("type")
    if block_type == "text":
        return TextBlock(text=raw.get("text") or "")
    elif block_type == "tool_use":
        return ToolUseBlock(
            name=raw.get("name", ""),
            id=raw.get("id", ""),
            input=raw.get("input") or {},
        )
    elif block_type == "tool_result":
        return ToolResultBlock(
            tool_use_id=raw.get("tool_use_id", ""),
            content=raw.get("content"),
            is_error=bool(raw.get("is_error", False)),
        )
    elif block_type == "thinking":
        return ThinkingBlock(thinking=raw.get("thinking") or "")
    return None


def _normalize_claude_record(record: dict) -> tuple[str, list[ContentBlock]] | None:
    role = record.get("type")
    if role not in ("user", "assistant"):
        return None

    message_data = record.get("message")
    if not isinstance(message_data, dict):
        return None

    content = message_data.get("content", "")
    if isinstance(content, str):
        return role, [TextBlock(text=content)]
    if isinstance(content, list):
        blocks = [b for b in (_claude_block(raw) for raw in content) if b is not None]
        return role, blocks
    return None


# ===== Codex =====


def _codex_block(payload: dict) -> tuple[str, list[ContentBlock]] | None:
    item_type = payload.get("type")

    if item_type == "message":
        role = payload.get("role")
        if role not in ("user", "assistant"):
            return None
        blocks: list[ContentBlock] = []
        for part in payload.get("content") or []:
            if isinstance(part, dict) and part.get("type") in ("input_text", "output_text", "text"):
                blocks.append(TextBlock(text=part.get("text") or ""))
        return role, blocks

    elif item_type == "function_call":
        arguments = payload.get("arguments")
        if isinstance(arguments, str):
            try:
                arguments = json.loads(arguments)
            except json.JSONDecodeError:
                arguments = {"arguments": arguments}
        if not isinstance(arguments, dict):
            arguments = {"arguments": arguments}
        return "assistant", [
            ToolUseBlock(
                name=payload.get("name", ""),
                id=payload.get("call_id", ""),
                input=arguments,
            )
        ]

    elif item_type == "function_call_output":
        output = payload.get("output")
        if isinstance(output, dict):
            output = output.get("content", output)
        return "user", [ToolResultBlock(tool_use_id=payload.get("call_id", ""), content=output)]

    elif item_type == "reasoning":
        summary = payload.get("summary") or []
        texts = [s.get("text", "") for s in summary if isinstance(s, dict)]
        return "assistant", [ThinkingBlock(thinking="\n".join(t for t in texts if t))]

    return None


def _normalize_codex_record(record: dict) -> tuple[str, list[ContentBlock]] | None:
    if record.get("type") != "response_item":
        return None
    payload = record.get("payload")
    if not isinstance(payload, dict):
        return None
    return _codex_block(payload)


# ===== Shared =====


def _clean_blocks(blocks: list[ContentBlock], kind: str) -> list[ContentBlock]:
    cleaned: list[ContentBlock] = []
    for block in blocks:
        if isinstance(block, TextBlock):
            text = clean_text(block.text, kind)
            if text:
                cleaned.append(TextBlock(text=text))
        elif isinstance(block, ThinkingBlock):
            if block.thinking.strip():
                cleaned.append(block)
        elif isinstance(block, (ToolUseBlock, ToolResultBlock)):
            cleaned.append(block)
        else:
            raise TypeError(f"Unknown content block: {block!r}")
    return cleaned


def parse_record(record: Any, kind: str = "claude") -> Message | None:
    """Normalize one decoded JSONL record into a Message.

    Returns None for metadata records (summaries, session_meta, ...) and for
    turns that are empty once system markup is removed.
    """
    if not isinstance(record, dict) or record.get("type") == "summary":
        return None

    if kind == "codex":
        normalized = _normalize_codex_record(record)
    else:
        normalized = _normalize_claude_record(record)
    if normalized is None:
        return None

    role, blocks = normalized
    blocks = _clean_blocks(blocks, kind)
    if not blocks:
        return None

    return Message(type=role, content=blocks, timestamp=record.get("timestamp"))


def iter_records(raw_text: str):
    """Yield decoded JSON records, skipping blank and malformed lines."""
    for line in raw_text.split("\n"):
        line = line.strip()
        if not line:
            continue
        try:
            yield json.loads(line)
        except json.JSONDecodeError as e:
            logger.debug(f"Skipping malformed JSON line: {e}")
            continue


def parse_transcript(raw_text: str, kind: str = "claude") -> list[Message]:
    """Parse raw transcript text into messages in file order."""
    messages = []
    for record in iter_records(raw_text):
        message = parse_record(record, kind)
        if message is not None:
            messages.append(message)
    return messages


@dataclass
class SessionMeta:
    """Header data read from the start of a transcript."""

    defining_record: dict | None = None
    cwd: str | None = None

    @property
    def is_sidechain(self) -> bool:
        return bool(self.defining_record and self.defining_record.get("isSidechain") is True)


def read_session_meta(raw_text: str, kind: str = "claude") -> SessionMeta:
    """Find the defining record of a transcript.

    For Claude Code the defining record is the first user or assistant
    record; snapshots, queue operations and other metadata lines before it
    are skipped. For Codex rollouts it is the first non-summary record, and
    the working directory comes from the ``session_meta`` record.
    """
    meta = SessionMeta()
    for record in iter_records(raw_text):
        if not isinstance(record, dict) or record.get("type") == "summary":
            continue
        if kind != "codex":
            if record.get("type") in ("user", "assistant"):
                meta.defining_record = record
                break
            continue
        if meta.defining_record is None:
            meta.defining_record = record
        if record.get("type") == "session_meta":
            payload = record.get("payload") or {}
            meta.cwd = payload.get("cwd") if isinstance(payload, dict) else None
            break
    return meta
