"""
Live model state shared between the tracking loop and the web server.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from typing import Any, Dict, List, Optional, Set, Tuple

from models.detection import TimeDataPassthrough
from models.events import Birth, Calibration, Death, EndOfFrame, SendType, Update, event_to_dict

DEFAULT_QUEUE_SIZE = 100
SUBSCRIBER_QUEUE_SIZE = 1000

_STOP = object()


class ModelServer:
    """
    Listener channel that republishes lifecycle events to web subscribers.

    The tracking loop calls `put((event, tdpt))`, which blocks while the
    inbound queue is full. A consumer thread keeps a summary of the live
    model and fans each event out, as a JSON-ready dict, to every
    subscriber queue. A subscriber whose queue is full misses that event.

    Args:
        queue_size: Capacity of the inbound queue.
    """

    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE):
        self._inbox: queue.Queue = queue.Queue(maxsize=queue_size)
        self._lock = threading.Lock()
        self._subscribers: List[queue.Queue] = []
        self._thread: Optional[threading.Thread] = None
        self.start_time = time.time()

        self.calibration: Optional[Dict[str, Any]] = None
        self.live_obj_ids: Set[int] = set()
        self.last_frame: Optional[int] = None
        self.events_received = 0
        self.events_dropped = 0

    def start(self) -> None:
        self._thread = threading.Thread(target=self._run, name="model-server", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        if self._thread is not None:
            self._inbox.put(_STOP)
            self._thread.join()
            self._thread = None

    def put(self, item: Tuple[SendType, TimeDataPassthrough]) -> None:
        """Listener interface used by the coordinator."""
        self._inbox.put(item)

    def subscribe(self) -> queue.Queue:
        q: queue.Queue = queue.Queue(maxsize=SUBSCRIBER_QUEUE_SIZE)
        with self._lock:
            self._subscribers.append(q)
            if self.calibration is not None:
                q.put_nowait({"type": "calibration", "calibration": self.calibration, "frame": 0})
        return q

    def unsubscribe(self, q: queue.Queue) -> None:
        with self._lock:
            if q in self._subscribers:
                self._subscribers.remove(q)

    def _run(self) -> None:
        while True:
            item = self._inbox.get()
            if item is _STOP:
                break
            event, tdpt = item
            self.handle(event, tdpt)
        logging.debug("Model server stopped")

    def handle(self, event: SendType, tdpt: TimeDataPassthrough) -> Dict[str, Any]:
        """Update the model summary and publish one event."""
        msg = event_to_dict(event)
        msg.setdefault("frame", tdpt.frame)
        msg["trigger_timestamp"] = tdpt.timestamp

        with self._lock:
            self.events_received += 1
            if isinstance(event, Calibration):
                self.calibration = event.calibration
            elif isinstance(event, Birth):
                self.live_obj_ids.add(event.row.obj_id)
            elif isinstance(event, Update):
                self.live_obj_ids.add(event.row.obj_id)
            elif isinstance(event, Death):
                self.live_obj_ids.discard(event.obj_id)
            elif isinstance(event, EndOfFrame):
                self.last_frame = event.frame

            for q in self._subscribers:
                try:
                    q.put_nowait(msg)
                except queue.Full:
                    self.events_dropped += 1
        return msg

    def status(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "running": self._thread is not None and self._thread.is_alive(),
                "has_calibration": self.calibration is not None,
                "last_frame": self.last_frame,
                "live_obj_ids": sorted(self.live_obj_ids),
                "num_subscribers": len(self._subscribers),
                "events_received": self.events_received,
                "events_dropped": self.events_dropped,
                "uptime_seconds": int(time.time() - self.start_time),
            }
