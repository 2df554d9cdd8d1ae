import logging
import queue
import threading
from typing import Any, Iterator, Optional

from ..errors import ChannelClosed, ChannelDisconnected

logger = logging.getLogger("ScanChannel")


class ScanChannel:
    """
    Bounded multi-producer channel between scan workers and a consumer.

    - send() blocks while the channel is full, which is what throttles the
      producers.
    - close() is called once every producer is done; receivers drain what
      is left and then stop.
    - close_receiver() is called by a consumer that stops early; every
      send() after that raises ChannelDisconnected.
    """

    def __init__(self, capacity: int = 1000, poll_interval: float = 0.05):
        self._queue: "queue.Queue[Any]" = queue.Queue(maxsize=max(1, int(capacity)))
        self._poll = poll_interval
        self._closed = threading.Event()
        self._receiver_closed = threading.Event()

    @property
    def capacity(self) -> int:
        return self._queue.maxsize

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    @property
    def disconnected(self) -> bool:
        return self._receiver_closed.is_set()

    def send(self, item: Any) -> None:
        while True:
            if self._receiver_closed.is_set():
                raise ChannelDisconnected("receiver has shut down")
            if self._closed.is_set():
                raise ChannelDisconnected("channel is closed")
            try:
                self._queue.put(item, timeout=self._poll)
                return
            except queue.Full:
                continue

    def recv(self, timeout: Optional[float] = None) -> Any:
        """Next item; raises ChannelClosed once closed and drained."""
        waited = 0.0
        while True:
            try:
                return self._queue.get(timeout=self._poll)
            except queue.Empty:
                if self._closed.is_set() and self._queue.empty():
                    raise ChannelClosed("channel closed")
                if self._receiver_closed.is_set():
                    raise ChannelClosed("receiver closed")
                waited += self._poll
                if timeout is not None and waited >= timeout:
                    raise TimeoutError("no item received")

    def close(self) -> None:
        self._closed.set()

    def close_receiver(self) -> None:
        self._receiver_closed.set()
        # unblock producers waiting on a full queue
        dropped = 0
        while True:
            try:
                self._queue.get_nowait()
                dropped += 1
            except queue.Empty:
                break
        if dropped:
            logger.debug("Receiver closed, dropped %d pending items", dropped)

    def __iter__(self) -> Iterator[Any]:
        while True:
            try:
                yield self.recv()
            except ChannelClosed:
                return
