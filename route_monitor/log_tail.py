"""Incremental decoding of the daemon's newline-delimited JSON log.

`GET /api/log` is either a live byte stream or, on servers or proxies that do
not stream, a growing text body. Both cases feed the same decoder:

- `LogTailDecoder` turns arbitrary byte chunks into `LogRecord`s. Multi-byte
  UTF-8 sequences and log lines may be split across chunks; the trailing
  undecoded bytes and the unterminated last line are carried to the next call.
- `StreamingLogTail` reads the stream chunk by chunk until it ends.
- `PollingLogTail` re-fetches the body on an interval and decodes only the
  suffix appended since the last poll. A body shorter than the last one means
  the log was truncated or rotated; the tail then starts over from offset 0.

Design Decisions:
    - Lines may end in `\\n`, `\\r\\n` or a bare `\\r`.
    - Lines that are not a JSON object are dropped; they never stop the tail.
    - Records are append-only; nothing is evicted.
"""
import codecs
import json
import logging
import re
import threading
from typing import Callable, List, Optional

from .clients.base import DaemonClient
from .models import LogRecord
from .utils import DaemonError

logger = logging.getLogger(__name__)

LINE_BREAK = re.compile(r"\r\n|\r|\n")

DEFAULT_CHUNK_SIZE = 8192
DEFAULT_POLL_INTERVAL = 2.0

RecordSink = Callable[[LogRecord], None]


def parse_record(line: str) -> Optional[LogRecord]:
    """Parses one log line. Returns None for blank or malformed lines."""
    line = line.strip()
    if not line:
        return None
    try:
        obj = json.loads(line)
    except (ValueError, RecursionError):
        # JSONDecodeError is a ValueError; so are oversized integer literals.
        return None
    if not isinstance(obj, dict):
        return None
    return LogRecord.from_json(obj)


class LogTailDecoder:
    """Reassembles log records from a byte stream of unknown length.

    Attributes:
        pending_partial: Decoded text after the last line terminator. It is
            never emitted until its terminator arrives.
    """

    def __init__(self, encoding: str = "utf-8"):
        self._encoding = encoding
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self.pending_partial = ""

    def feed(self, chunk: bytes) -> List[LogRecord]:
        """Decodes one chunk and returns the records it completed."""
        return self.feed_text(self._decoder.decode(chunk))

    def feed_text(self, text: str) -> List[LogRecord]:
        if not text:
            return []
        segments = LINE_BREAK.split(self.pending_partial + text)
        self.pending_partial = segments.pop()
        records = []
        for segment in segments:
            record = parse_record(segment)
            if record is not None:
                records.append(record)
        return records

    def reset(self) -> None:
        """Discards buffered bytes and text, e.g. after the log was rotated."""
        self._decoder.reset()
        self.pending_partial = ""


class StreamingLogTail:
    """Follows the live log stream until it ends, fails, or is stopped."""

    def __init__(self, client: DaemonClient, sink: RecordSink, chunk_size: int = DEFAULT_CHUNK_SIZE):
        self._client = client
        self._sink = sink
        self._chunk_size = chunk_size
        self.decoder = LogTailDecoder()

    def run(self, stop_event: threading.Event) -> bool:
        """Consumes the stream.

        Returns:
            True when the stream ended (or the tail was stopped), False when
            streaming failed and the caller should fall back to polling.
        """
        try:
            for chunk in self._client.open_log_stream(self._chunk_size):
                if stop_event.is_set():
                    return True
                for record in self.decoder.feed(chunk):
                    self._sink(record)
        except DaemonError as e:
            logger.info(f"Log stream unavailable ({e}); falling back to polling.")
            return False
        logger.info("Log stream ended.")
        return True


class PollingLogTail:
    """Polls the log body and decodes only what was appended since last time."""

    def __init__(self, client: DaemonClient, sink: RecordSink, interval: float = DEFAULT_POLL_INTERVAL,
                 on_error: Optional[Callable[[DaemonError], None]] = None):
        self._client = client
        self._sink = sink
        self.interval = interval
        self._on_error = on_error
        self.decoder = LogTailDecoder()
        self.last_length = 0

    def consume(self, body: bytes) -> List[LogRecord]:
        """Decodes the part of `body` not seen by earlier polls."""
        if len(body) < self.last_length:
            logger.info(f"Log shrank from {self.last_length} to {len(body)} bytes; restarting from the top.")
            self.last_length = 0
            self.decoder.reset()
        suffix = body[self.last_length:]
        self.last_length = len(body)
        return self.decoder.feed(suffix)

    def poll_once(self) -> List[LogRecord]:
        try:
            body = self._client.fetch_log_snapshot()
        except DaemonError as e:
            logger.warning(f"Log poll failed: {e}")
            if self._on_error:
                self._on_error(e)
            return []
        records = self.consume(body)
        for record in records:
            self._sink(record)
        return records

    def run(self, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            self.poll_once()
            stop_event.wait(self.interval)


def follow_log(client: DaemonClient, sink: RecordSink, stop_event: threading.Event, mode: str = "auto",
               chunk_size: int = DEFAULT_CHUNK_SIZE, poll_interval: float = DEFAULT_POLL_INTERVAL,
               on_error: Optional[Callable[[DaemonError], None]] = None) -> None:
    """Tails the daemon log into `sink` until `stop_event` is set or the stream ends.

    Args:
        mode: `stream` to stream only, `poll` to poll only, `auto` to stream
            and fall back to polling when streaming fails.
    """
    if mode in ("auto", "stream"):
        streamed = StreamingLogTail(client, sink, chunk_size).run(stop_event)
        if streamed or mode == "stream":
            return
    PollingLogTail(client, sink, poll_interval, on_error=on_error).run(stop_event)
