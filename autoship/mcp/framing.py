"""Newline-delimited JSON framing for the tool-provider stdio stream."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Iterable, Iterator, List

logger = logging.getLogger(__name__)

NEWLINE = b"\n"


class TransportError(Exception):
    """Raised when bytes on the wire cannot be turned into a message."""


def encode_message(message: Dict[str, Any]) -> bytes:
    """Serialize one message as a single newline-terminated JSON line."""
    try:
        body = json.dumps(message, separators=(",", ":"))
    except (TypeError, ValueError) as exc:
        raise TransportError(f"Cannot serialize message: {exc}") from exc
    return body.encode("utf-8") + NEWLINE


def decode_line(line: bytes) -> Dict[str, Any]:
    """Parse one line into a JSON object."""
    try:
        parsed = json.loads(line.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise TransportError(f"Malformed line: {exc}") from exc
    if not isinstance(parsed, dict):
        raise TransportError(f"Expected a JSON object, got {type(parsed).__name__}")
    return parsed


class LineFramer:
    """
    Turns arbitrarily sized byte chunks into parsed JSON messages.

    Lines are split strictly on ``\\n``. The trailing partial line is kept
    until a later chunk terminates it, so the parsed sequence does not depend
    on where the chunk boundaries fall. Lines that fail to parse are dropped;
    the child may print log output on the same stream.
    """

    def __init__(self) -> None:
        self._buffer = b""
        self.dropped = 0

    @property
    def pending(self) -> bytes:
        """Bytes received but not yet terminated by a newline."""
        return self._buffer

    def reset(self) -> None:
        self._buffer = b""

    def feed(self, chunk: bytes) -> List[Dict[str, Any]]:
        """Consume ``chunk`` and return every message it completes."""
        if not chunk:
            return []

        self._buffer += chunk
        *lines, self._buffer = self._buffer.split(NEWLINE)

        messages: List[Dict[str, Any]] = []
        for line in lines:
            line = line.strip()
            if not line:
                continue
            try:
                messages.append(decode_line(line))
            except TransportError as exc:
                self.dropped += 1
                logger.debug("Dropping non-JSON line (%s): %r", exc, line[:200])
        return messages


def iter_messages(chunks: Iterable[bytes]) -> Iterator[Dict[str, Any]]:
    """
    Lazily yield messages from a source of byte chunks.

    The iterator ends when ``chunks`` is exhausted. An unterminated final
    line is discarded, since it never became a complete message.
    """
    framer = LineFramer()
    for chunk in chunks:
        yield from framer.feed(chunk)
    if framer.pending.strip():
        logger.debug("Stream ended with %d unterminated bytes", len(framer.pending))
