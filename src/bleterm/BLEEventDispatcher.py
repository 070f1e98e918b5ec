# MIT License
#
# Copyright (c) 2025 bleterm Contributors
#
# Permission is hereby granted, free of charge, to any person obtaining a copy
# of this software and associated documentation files (the "Software"), to deal
# in the Software without restriction, including without limitation the rights
# to use, copy, modify, merge, publish, distribute, sublicense, and/or sell
# copies of the Software, and to permit persons to whom the Software is
# furnished to do so, subject to the following conditions:
#
# The above copyright notice and this permission notice shall be included in
# all copies or substantial portions of the Software.
#
# THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
# IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
# FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
# AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
# LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
# OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE
# SOFTWARE.

"""
Single-consumer dispatcher for session state mutation.

Driver events and user commands originate on different threads (the driver's
event loop thread and whatever thread the presentation runs on). Both are
posted here and executed one at a time, in arrival order, by a single
consumer: either the dispatcher's own worker thread, or the caller of
drain() when no worker is running.

THREADING MODEL:
- post() may be called from any thread
- Exactly one consumer at a time; drain() refuses to run while the worker does
- A handler that raises is logged and skipped, the queue keeps flowing
"""

import queue
import threading
from typing import Callable, Optional

import RNS

_STOP = object()


class BLEEventDispatcher:
    def __init__(self, name: str = "BLE-Session"):
        self.name = name
        self._queue: "queue.Queue" = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def post(self, handler: Callable, *args):
        """Queue handler(*args) for execution on the consumer."""
        self._queue.put((handler, args))

    def start(self):
        """Start the worker thread that consumes the queue."""
        if self._running:
            RNS.log(f"{self} already running", RNS.LOG_DEBUG)
            return

        self._running = True
        self._thread = threading.Thread(target=self._run, daemon=True, name=self.name)
        self._thread.start()
        RNS.log(f"{self} worker started", RNS.LOG_DEBUG)

    def stop(self, timeout: float = 5.0):
        """
        Stop the worker after the items already queued have been handled.
        """
        if not self._running:
            return

        self._queue.put(_STOP)
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                RNS.log(f"{self} worker did not stop within {timeout}s", RNS.LOG_WARNING)
        self._running = False
        self._thread = None
        RNS.log(f"{self} worker stopped", RNS.LOG_DEBUG)

    def drain(self) -> int:
        """
        Run every queued item on the calling thread.

        Items posted by the handlers themselves are processed in the same
        call. Only valid while the worker thread is not running.

        Returns:
            Number of items processed
        """
        if self._running:
            raise RuntimeError(f"{self} cannot drain while the worker thread is consuming")

        processed = 0
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return processed
            if item is _STOP:
                continue
            self._invoke(item)
            processed += 1

    def _run(self):
        while True:
            item = self._queue.get()
            if item is _STOP:
                break
            self._invoke(item)

    def _invoke(self, item):
        handler, args = item
        try:
            handler(*args)
        except Exception as e:
            RNS.log(f"{self} error in handler {getattr(handler, '__name__', handler)}: {type(e).__name__}: {e}",
                    RNS.LOG_ERROR)

    def __str__(self):
        return f"BLEEventDispatcher[{self.name}]"
