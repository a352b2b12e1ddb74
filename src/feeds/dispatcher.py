"""
Single-consumer event loop for feed events.

Socket threads only put typed events on the queue. The dispatcher takes them
off in order and calls the handlers registered for each event type, so all
state they touch is mutated from one thread.
"""
import logging
import threading
from queue import Empty, Queue
from typing import Any, Callable, Dict, List, Optional, Type

logger = logging.getLogger(__name__)


class FeedDispatcher:
    """
    Routes queued events to handlers by type.

    Example:
        dispatcher = FeedDispatcher()
        dispatcher.register(PriceTick, history.append)
        feed = BinanceFeed(on_tick=dispatcher.queue.put)
        dispatcher.start()
    """

    def __init__(self, queue: Optional[Queue] = None):
        self.queue: Queue = queue or Queue()
        self.processed = 0
        self.handler_errors = 0
        self._handlers: Dict[Type, List[Callable[[Any], None]]] = {}
        self._running = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def register(self, event_type: Type, handler: Callable[[Any], None]) -> None:
        """Call `handler` for every event of exactly `event_type`, in registration order."""
        self._handlers.setdefault(event_type, []).append(handler)

    def put(self, event: Any) -> None:
        self.queue.put(event)

    def dispatch(self, event: Any) -> None:
        """Deliver one event. Handler errors are logged and never propagate."""
        handlers = self._handlers.get(type(event))
        if not handlers:
            logger.debug(f"No handler for {type(event).__name__}")
            return
        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                self.handler_errors += 1
                logger.error(f"Handler error for {type(event).__name__}: {e}", exc_info=True)
        self.processed += 1

    def drain(self) -> int:
        """Dispatch everything currently queued. Returns the number of events handled."""
        count = 0
        while True:
            try:
                event = self.queue.get_nowait()
            except Empty:
                return count
            self.dispatch(event)
            count += 1

    def run(self, poll_interval: float = 0.5) -> None:
        """Blocking loop until stop()."""
        self._running.set()
        while self._running.is_set():
            try:
                event = self.queue.get(timeout=poll_interval)
            except Empty:
                continue
            self.dispatch(event)

    def start(self) -> None:
        """Run the loop on a daemon thread."""
        if self._thread and self._thread.is_alive():
            return
        self._running.set()
        self._thread = threading.Thread(target=self.run, name="feed-dispatcher", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 2.0) -> None:
        self._running.clear()
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)
        self._thread = None

    @property
    def is_running(self) -> bool:
        return self._running.is_set()
