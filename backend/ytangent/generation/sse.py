"""Incremental decoder for OpenAI-style server-sent event streams.

Network reads split frames at arbitrary byte boundaries, so text is buffered
until a full line is available. Only `data:` lines carrying
choices[0].delta.content produce output; `[DONE]` ends the stream.
"""

import json
import logging

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"


class SSEDecoder:
    def __init__(self) -> None:
        self._buffer = ""
        self.done = False

    def feed(self, text: str) -> list[str]:
        """Add raw stream text, returning the content deltas it completes."""
        self._buffer += text
        deltas: list[str] = []
        while not self.done:
            newline = self._buffer.find("\n")
            if newline == -1:
                break
            line = self._buffer[:newline]
            self._buffer = self._buffer[newline + 1:]
            delta = self._decode_line(line)
            if delta:
                deltas.append(delta)
        return deltas

    def flush(self) -> list[str]:
        """Decode whatever unterminated line remains at end of stream."""
        line, self._buffer = self._buffer, ""
        if self.done or not line.strip():
            return []
        delta = self._decode_line(line)
        return [delta] if delta else []

    def _decode_line(self, line: str) -> str | None:
        line = line.rstrip("\r")
        if not line or line.startswith(":"):
            return None
        if not line.startswith("data:"):
            return None

        data = line[5:].strip()
        if data == DONE_SENTINEL:
            self.done = True
            return None

        try:
            parsed = json.loads(data)
            content = parsed["choices"][0]["delta"].get("content")
        except (json.JSONDecodeError, KeyError, IndexError, TypeError, AttributeError):
            logger.debug("Skipping malformed SSE frame: %.80s", data)
            return None
        return content if isinstance(content, str) else None
