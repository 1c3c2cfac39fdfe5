"""Background asyncio loop shared by the socket-based services."""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Coroutine
from concurrent.futures import TimeoutError
from typing import Any, TypeVar

L = logging.getLogger("trigger_sync.lifecycle")

T = TypeVar("T")


class LoopRunner:
    """Owns one asyncio loop on a daemon thread and bridges sync callers into it."""

    def __init__(self, *, name: str = "trigger_sync.loop", logger: logging.Logger | None = None):
        self._name = name
        self._logger = logger or L
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._stopped = False
        self._lock = threading.Lock()
        self._loop_thread_ident: int | None = None

    def _ensure_loop(self) -> asyncio.AbstractEventLoop:
        with self._lock:
            if self._stopped:
                raise RuntimeError("Async loop already stopped")
            if self._loop and self._thread and self._thread.is_alive():
                return self._loop
            loop = asyncio.new_event_loop()
            ready = threading.Event()

            def _runner():
                asyncio.set_event_loop(loop)
                self._loop_thread_ident = threading.get_ident()
                ready.set()
                loop.run_forever()

            self._loop = loop
            self._thread = threading.Thread(target=_runner, name=self._name, daemon=True)
            self._thread.start()
            ready.wait(timeout=0.5)
            return loop

    def _in_loop_thread(self) -> bool:
        return (
            self._loop_thread_ident is not None
            and threading.get_ident() == self._loop_thread_ident
        )

    def run_async(self, coro: Coroutine[Any, Any, T], timeout: float | None = 0.5) -> T:
        """Run `coro` on the loop from another thread and wait for its result."""
        loop = self._ensure_loop()
        if self._in_loop_thread():
            coro.close()
            raise RuntimeError(
                "run_async must not be called from the loop thread; await directly"
            )
        fut = asyncio.run_coroutine_threadsafe(coro, loop)
        try:
            return fut.result(timeout=timeout)
        except TimeoutError:
            fut.cancel()
            self._logger.warning("run_async timeout after %.2fs", timeout or 0)
            raise

    @property
    def is_running(self) -> bool:
        return bool(self._thread and self._thread.is_alive() and not self._stopped)

    def shutdown_loop(self, timeout: float = 1.0):
        """Cancel pending tasks, stop the loop and join its thread."""
        if self._in_loop_thread():
            raise RuntimeError("shutdown_loop must not be called from the loop thread")
        with self._lock:
            self._stopped = True
            loop = self._loop
            thread = self._thread
            if not loop or not thread or loop.is_closed():
                return

        async def _cancel_pending():
            current = asyncio.current_task()
            tasks = [t for t in asyncio.all_tasks() if t is not current and not t.done()]
            if tasks:
                self._logger.debug(
                    "shutdown_loop pending_tasks=%d names=%s",
                    len(tasks),
                    ", ".join(t.get_name() for t in tasks[:10]),
                )
            for t in tasks:
                t.cancel()
            if tasks:
                await asyncio.gather(*tasks, return_exceptions=True)
            await loop.shutdown_asyncgens()

        fut = asyncio.run_coroutine_threadsafe(_cancel_pending(), loop)
        try:
            fut.result(timeout=timeout)
        except TimeoutError:
            fut.cancel()
            self._logger.warning("shutdown_loop timed out after %.2fs", timeout)
        finally:
            loop.call_soon_threadsafe(loop.stop)
            thread.join(timeout=timeout)
            if not thread.is_alive() and not loop.is_closed():
                loop.close()
            self._loop = None
            self._thread = None
            self._loop_thread_ident = None


class AsyncTaskOwner:
    """Tracks tasks a service spawned on a LoopRunner so stop() can cancel them."""

    def __init__(self, *, loop_runner: LoopRunner, owner_name: str = "async_service"):
        self._loop_runner = loop_runner
        self._owner_name = owner_name
        self._tasks: list[Any] = []

    def register(self, task: Any):
        if task is None:
            return None
        self._tasks.append(task)
        task.add_done_callback(self._forget)
        return task

    def _forget(self, task: Any):
        try:
            self._tasks.remove(task)
        except ValueError:
            pass

    def cancel_and_clear(self):
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            if isinstance(task, asyncio.Task):
                # asyncio tasks may only be cancelled from their own loop.
                task.get_loop().call_soon_threadsafe(task.cancel)
            else:
                task.cancel()
        if tasks:
            L.debug("%s cancelled %d task(s)", self._owner_name, len(tasks))

    @property
    def loop_runner(self) -> LoopRunner:
        return self._loop_runner


def run_async_cleanup(
    coro: Coroutine[Any, Any, Any],
    *,
    loop_runner: LoopRunner,
    timeout: float = 0.5,
):
    """Run async cleanup from sync code with a bounded wait; no-op once stopped."""
    if not loop_runner.is_running:
        coro.close()
        return
    loop_runner.run_async(coro, timeout=timeout)


__all__ = [
    "LoopRunner",
    "AsyncTaskOwner",
    "run_async_cleanup",
]
