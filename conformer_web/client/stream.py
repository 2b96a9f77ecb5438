"""Incremental decoder for the relay's ``text/event-stream`` body."""

import codecs
from typing import List

from conformer_web.jobs.events import FRAME_DELIMITER, FRAME_PREFIX, StreamEvent, decode_event


class EventStreamDecoder:
    """Buffers network chunks and yields only complete frames.

    A chunk may end in the middle of a frame, of the ``\\n\\n`` delimiter or
    of a multi-byte UTF-8 character; the remainder is kept for the next feed.
    """

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, chunk: bytes) -> List[StreamEvent]:
        self._buffer += self._decoder.decode(chunk)
        frames = self._buffer.split(FRAME_DELIMITER)
        self._buffer = frames.pop()
        return [decode_event(f[len(FRAME_PREFIX):]) for f in frames if f.startswith(FRAME_PREFIX)]

    def close(self) -> List[StreamEvent]:
        """Flush whatever is left once the stream has ended."""
        self._buffer += self._decoder.decode(b"", final=True)
        rest, self._buffer = self._buffer.strip("\n"), ""
        if rest.startswith(FRAME_PREFIX):
            return [decode_event(rest[len(FRAME_PREFIX):])]
        return []
