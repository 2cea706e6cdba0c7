"""File tailer for reading appended lines from session transcripts."""

import logging
import re
import urllib.parse
from pathlib import Path

from .transcript import Message, parse_record, iter_records

logger = logging.getLogger(__name__)


def get_project_name(folder: str) -> str:
    """Extract a human-readable project name from a project folder name.

    Claude Code stores sessions under folders like
    ``-Users-alice-projects-web-app``: the original path with slashes
    replaced by dashes. Project names can contain dashes too, so common
    directory markers are used to find where the project name starts.
    """
    folder = urllib.parse.unquote(folder)

    # Order matters - check more specific patterns first
    markers = ["-projects-", "-repos-", "-src-", "-code-", "-github-", "-tmp-", "-os-"]
    for marker in markers:
        if marker in folder:
            project_name = folder.split(marker, 1)[1]
            return project_name if project_name else folder

    match = re.match(r"^-(?:Users|home)-[^-]+-(.+)$", folder)
    if match:
        return match.group(1)

    return folder.lstrip("-") or folder


def get_session_id(session_path: Path) -> str:
    """Get the session ID (filename without extension)."""
    return session_path.stem


class SessionTailer:
    """Tail a JSONL session file, yielding messages for new complete lines."""

    def __init__(self, path: Path, kind: str = "claude"):
        self.path = Path(path)
        self.kind = kind
        self.position = 0  # Byte position in file
        self.buffer = b""  # Incomplete trailing line

    def read_new_lines(self) -> list[Message]:
        """Read and parse new complete lines from the file.

        An incomplete trailing line is buffered until the writer finishes it.

        Raises:
            OSError: If the file can no longer be read.
        """
        with open(self.path, "rb") as f:
            f.seek(self.position)
            content = f.read()
            self.position = f.tell()

        if not content:
            return []

        self.buffer += content
        complete, sep, rest = self.buffer.rpartition(b"\n")
        if not sep:
            return []
        self.buffer = rest

        text = complete.decode("utf-8", errors="replace")
        results = []
        for record in iter_records(text):
            message = parse_record(record, self.kind)
            if message is not None:
                results.append(message)
        return results
