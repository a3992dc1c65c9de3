"""Run an asyncio event loop in a background thread for sync callers (Flask)."""

from __future__ import annotations

import asyncio
import threading
from typing import Any, Awaitable, Callable, Optional, TypeVar

from access_vision.core.logger import get_logger

logger = get_logger("event_loop")

T = TypeVar("T")


class BackgroundEventLoop:
    """A dedicated thread running one asyncio loop.

    All detection sessions driven by the web server live on this loop, so
    their timers, recognition calls and cooldown maps share one thread.
    """

    def __init__(self, name: str = "access-vision-loop") -> None:
        self.name = name
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._ready = threading.Event()
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the loop thread if it is not running yet."""
        with self._lock:
            if self.is_running:
                return
            self._ready.clear()
            self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
            self._thread.start()
        self._ready.wait()
        logger.debug("Background event loop started")

    def _run(self) -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        self._loop = loop
        self._ready.set()
        try:
            loop.run_forever()
        finally:
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.run_until_complete(loop.shutdown_default_executor())
            loop.close()

    def run(self, coro: Awaitable[T], timeout: Optional[float] = 30.0) -> T:
        """Run a coroutine on the loop and wait for its result."""
        self.start()
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        return future.result(timeout=timeout)

    def call(self, func: Callable[..., T], *args: Any, timeout: Optional[float] = 30.0) -> T:
        """Run a plain function on the loop thread and wait for its result."""

        async def invoke() -> T:
            return func(*args)

        return self.run(invoke(), timeout=timeout)

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the loop and join the thread."""
        with self._lock:
            if not self.is_running or self._loop is None:
                return
            self._loop.call_soon_threadsafe(self._loop.stop)
            thread = self._thread
        thread.join(timeout=timeout)
        self._thread = None
        logger.debug("Background event loop stopped")
