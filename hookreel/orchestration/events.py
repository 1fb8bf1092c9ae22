"""
Status event transport between the pipeline worker and the HTTP response.

The pipeline pushes StatusEvents onto an EventChannel from its worker thread;
the request handler iterates `channel.stream()` and writes each encoded event
to the client. On the wire every event is one JSON object followed by a blank
line.
"""
import json
import logging
import queue
from typing import Any, Dict, Iterator, List, Optional, Union

from hookreel.models import StatusEvent

logger = logging.getLogger(__name__)

EVENT_SEPARATOR = "\n\n"

_CLOSED = object()


def encode_event(event: StatusEvent) -> str:
    return json.dumps(event.to_payload()) + EVENT_SEPARATOR


class EventChannel:
    """Single-producer, single-consumer queue of StatusEvents."""

    def __init__(self):
        self._queue: "queue.Queue" = queue.Queue()
        self._closed = False

    def emit(self, event: StatusEvent):
        if self._closed:
            raise RuntimeError(f"Cannot emit {event.status.value} on a closed channel")
        logger.debug(f"Emitting status event: {event.status.value}")
        self._queue.put(event)

    def close(self):
        if not self._closed:
            self._closed = True
            self._queue.put(_CLOSED)

    def events(self, timeout: Optional[float] = None) -> Iterator[StatusEvent]:
        """Yield events until the channel is closed."""
        while True:
            item = self._queue.get(timeout=timeout)
            if item is _CLOSED:
                return
            yield item

    def stream(self) -> Iterator[str]:
        for event in self.events():
            yield encode_event(event)


class StatusStreamDecoder:
    """
    Incremental decoder for the event stream. Reads may split an event
    anywhere, so incomplete text is buffered until its separator arrives.
    """

    def __init__(self):
        self._buffer = ""

    def feed(self, chunk: Union[str, bytes]) -> List[Dict[str, Any]]:
        if isinstance(chunk, bytes):
            chunk = chunk.decode("utf-8")
        self._buffer += chunk
        *complete, self._buffer = self._buffer.split(EVENT_SEPARATOR)
        return [json.loads(part) for part in complete if part.strip()]

    def finish(self) -> List[Dict[str, Any]]:
        """Decode whatever is left once the stream has ended."""
        remainder, self._buffer = self._buffer, ""
        return [json.loads(remainder)] if remainder.strip() else []
