"""
Status broadcaster - push status and progress notifications to subscribers

Two kinds of subscribers:
1. Callbacks - invoked synchronously, in publish order, on the publishing thread
2. Streams - bounded queues drained by SSE generators (one per HTTP client)
"""
import itertools
import json
import queue
import threading
from typing import Any, Callable, Dict, Generator, Tuple

from ..models import StatusEvent
from ..utils.logger import get_logger

logger = get_logger('status_broadcaster')

# Notification kinds
KIND_STATUS = 'status'
KIND_PROGRESS = 'progress'

Listener = Callable[[str, Any], None]


class StatusBroadcaster:
    """Fan-out of status/progress notifications.

    Example:
        >>> broadcaster = StatusBroadcaster()
        >>> unsubscribe = broadcaster.subscribe(lambda kind, payload: print(kind, payload))
        >>> broadcaster.publish_progress(42)
        progress 42
        >>> unsubscribe()
    """

    # Per-stream buffer; the oldest message is dropped when a client lags
    STREAM_MAXSIZE = 100
    HEARTBEAT_SECONDS = 30

    def __init__(self):
        self._listeners: Dict[int, Listener] = {}
        self._streams: Dict[str, queue.Queue] = {}
        self._lock = threading.RLock()
        self._ids = itertools.count(1)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a callback(kind, payload). Returns an unsubscribe function."""
        with self._lock:
            listener_id = next(self._ids)
            self._listeners[listener_id] = listener

        def unsubscribe():
            with self._lock:
                self._listeners.pop(listener_id, None)

        return unsubscribe

    def subscribe_stream(self) -> Tuple[str, Generator[str, None, None]]:
        """Open an SSE stream. Returns (client_id, generator of SSE frames)."""
        with self._lock:
            client_id = f"client_{next(self._ids)}"
            q = queue.Queue(maxsize=self.STREAM_MAXSIZE)
            self._streams[client_id] = q
        logger.debug(f"[StatusBroadcaster] Stream {client_id} opened")
        return client_id, self._create_generator(client_id, q)

    def unsubscribe_stream(self, client_id: str) -> None:
        with self._lock:
            self._streams.pop(client_id, None)

    def close_streams(self) -> None:
        """Signal every open stream to finish."""
        with self._lock:
            for q in self._streams.values():
                self._put_latest(q, None)

    def publish_status(self, event: StatusEvent) -> None:
        self._publish(KIND_STATUS, event)

    def publish_progress(self, count: int) -> None:
        self._publish(KIND_PROGRESS, count)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._listeners) + len(self._streams)

    def _publish(self, kind: str, payload: Any) -> None:
        with self._lock:
            listeners = list(self._listeners.values())
            message = {
                'kind': kind,
                'payload': payload.to_dict() if isinstance(payload, StatusEvent) else payload,
            }
            for q in self._streams.values():
                self._put_latest(q, message)

            for listener in listeners:
                try:
                    listener(kind, payload)
                except Exception as e:
                    logger.warning(f"[StatusBroadcaster] Listener failed on {kind}: {e}")

    @staticmethod
    def _put_latest(q: queue.Queue, message: Any) -> None:
        try:
            q.put_nowait(message)
        except queue.Full:
            # Drop the oldest message to make room
            try:
                q.get_nowait()
            except queue.Empty:
                pass
            q.put_nowait(message)

    def _create_generator(self, client_id: str, q: queue.Queue) -> Generator[str, None, None]:
        try:
            while True:
                try:
                    message = q.get(timeout=self.HEARTBEAT_SECONDS)
                except queue.Empty:
                    yield ": heartbeat\n\n"
                    continue
                if message is None:
                    break
                yield f"event: {message['kind']}\ndata: {json.dumps(message['payload'], ensure_ascii=False, default=str)}\n\n"
        finally:
            self.unsubscribe_stream(client_id)
            logger.debug(f"[StatusBroadcaster] Stream {client_id} closed")
