"""Loading and invocation of a single handler.

A handler may signal completion by returning a value or an awaitable, by
calling a node-style callback, or by settling the mock context later from
background work. Each idiom is adapted onto the context's completion channel
so classification only ever looks at one future.
"""

import asyncio
import importlib.util
import inspect
import logging
import re
import sys
import threading
import time
from collections.abc import Awaitable, Callable, Collection, Mapping, Sequence
from dataclasses import dataclass
from types import ModuleType
from typing import Any

from sls_test_runner.context import ExecutionContext, HandlerError
from sls_test_runner.models.descriptor import FunctionDescriptor
from sls_test_runner.models.result import (
    Failed,
    Invocation,
    Outcome,
    Succeeded,
    TimedOut,
)

log = logging.getLogger(__name__)

BACKGROUND_POLL_INTERVAL = 0.01


class HandlerLoadError(Exception):
    """Raised when a handler module or its entry symbol cannot be loaded."""


def handler_module_name(descriptor: FunctionDescriptor) -> str:
    """Name the handler module is registered under while it is invoked."""
    return "sls_handler_" + re.sub(r"\W", "_", descriptor.name)


def load_handler_module(descriptor: FunctionDescriptor) -> ModuleType:
    """Import the handler's source file as a fresh module.

    The module directory is importable while the module body executes so the
    handler can import its sibling modules.
    """
    module_path = descriptor.module_path
    if not module_path.is_file():
        raise HandlerLoadError(f"Cannot find module '{module_path}'")

    module_name = handler_module_name(descriptor)
    spec = importlib.util.spec_from_file_location(module_name, module_path)
    if spec is None or spec.loader is None:
        raise HandlerLoadError(f"Cannot load module '{module_path}'")

    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    module_dir = str(module_path.parent)
    sys.path.insert(0, module_dir)
    try:
        spec.loader.exec_module(module)
    except BaseException:
        sys.modules.pop(module_name, None)
        raise
    finally:
        if module_dir in sys.path:
            sys.path.remove(module_dir)

    return module


def resolve_entry(module: ModuleType, descriptor: FunctionDescriptor) -> Callable[..., Any]:
    """Look up the handler's entry callable in its loaded module."""
    entry = getattr(module, descriptor.entry_symbol, None)
    if entry is None or not callable(entry):
        raise HandlerLoadError(f"Handler function {descriptor.handler} not found")
    return entry


def accepts_callback(entry: Callable[..., Any]) -> bool:
    """Whether the handler takes a third, node-style callback argument."""
    try:
        signature = inspect.signature(entry)
    except (TypeError, ValueError):
        return False

    if "callback" in signature.parameters:
        return True

    positional = [
        p
        for p in signature.parameters.values()
        if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD)
    ]
    return len(positional) >= 3


def complete_from_awaitable(
    context: ExecutionContext, awaitable: Awaitable[Any]
) -> asyncio.Future[Any]:
    """Settle the context with the outcome of a returned awaitable."""

    async def _await() -> Any:
        try:
            return await awaitable
        except SystemExit as e:
            # Must not reach the event loop, which would stop the whole run
            raise HandlerError(_error_message(e)) from e

    task = asyncio.ensure_future(_await())

    def _settle(fut: asyncio.Future[Any]) -> None:
        if fut.cancelled():
            return
        if (error := fut.exception()) is not None:
            context.fail(error)
        else:
            context.succeed(fut.result())

    task.add_done_callback(_settle)
    return task


def complete_from_background(
    context: ExecutionContext,
    tasks: Collection[asyncio.Future[Any]],
    threads: Collection[threading.Thread],
    timers: Collection[asyncio.TimerHandle] = (),
) -> asyncio.Task[None]:
    """Settle the context once fire-and-forget work drains.

    Background work is the tasks, threads and loop timers the handler started
    during its call. Work that settles the context itself wins; otherwise the
    invocation succeeds with ``None`` or fails with the first task error.
    Daemon threads and thread-pool workers are not waited for.
    """
    loop = asyncio.get_running_loop()
    joined = [thread for thread in threads if _is_handler_thread(thread)]

    async def _drain() -> None:
        results = await asyncio.gather(*tasks, return_exceptions=True)
        while True:
            # Timers due before this wake-up have run by the time it resumes
            wake = loop.time() + BACKGROUND_POLL_INTERVAL
            await asyncio.sleep(BACKGROUND_POLL_INTERVAL)
            if context.settled:
                return
            if not any(thread.is_alive() for thread in joined) and not any(
                not timer.cancelled() and timer.when() >= wake for timer in timers
            ):
                break

        errors = [
            r
            for r in results
            if isinstance(r, BaseException) and not isinstance(r, asyncio.CancelledError)
        ]
        if errors:
            context.fail(errors[0])
        else:
            context.succeed(None)

    return asyncio.ensure_future(_drain())


def scheduled_timers(loop: asyncio.AbstractEventLoop) -> Sequence[asyncio.TimerHandle]:
    """Timer handles pending on the loop (``call_later``/``call_at``).

    The standard event loops keep them in ``_scheduled``; loops without it
    report none, and handlers there must settle through tasks or threads.
    """
    return [
        timer for timer in getattr(loop, "_scheduled", ()) if not timer.cancelled()
    ]


def _is_handler_thread(thread: threading.Thread) -> bool:
    if thread.daemon:
        return False
    target = getattr(thread, "_target", None)
    return getattr(target, "__module__", None) != "concurrent.futures.thread"


@dataclass(frozen=True, kw_only=True)
class HandlerInvoker:
    """Invokes one handler and classifies its completion."""

    context_factory: Callable[[FunctionDescriptor], ExecutionContext] | None = None

    def _make_context(self, descriptor: FunctionDescriptor) -> ExecutionContext:
        if self.context_factory is not None:
            return self.context_factory(descriptor)
        return ExecutionContext(
            function_name=descriptor.name,
            timeout=descriptor.timeout,
            test_mode=True,
        )

    async def invoke(
        self, descriptor: FunctionDescriptor, event: Mapping[str, Any]
    ) -> Invocation:
        """Load, invoke and observe one handler.

        Every error raised by the handler, ``sys.exit`` included, is converted
        into a ``Failed`` outcome; nothing propagates to the caller. The
        handler module is unregistered once the invocation is over.
        """
        start = time.monotonic()

        try:
            return await self._invoke(descriptor, event, start)
        finally:
            sys.modules.pop(handler_module_name(descriptor), None)

    async def _invoke(
        self, descriptor: FunctionDescriptor, event: Mapping[str, Any], start: float
    ) -> Invocation:
        try:
            entry = resolve_entry(load_handler_module(descriptor), descriptor)
        except (Exception, SystemExit) as e:
            log.debug("Failed to load %s", descriptor.handler, exc_info=True)
            return Invocation(
                outcome=Failed(message=_error_message(e), kind="Error"),
                duration=time.monotonic() - start,
            )

        loop = asyncio.get_running_loop()
        context = self._make_context(descriptor)
        with_callback = accepts_callback(entry)
        tasks_before = asyncio.all_tasks()
        threads_before = set(threading.enumerate())
        timers_before = set(scheduled_timers(loop))

        try:
            if with_callback:
                returned = entry(event, context, context.done)
            else:
                returned = entry(event, context)
        except (Exception, SystemExit) as e:
            log.debug("Handler %s raised", descriptor.handler, exc_info=True)
            return Invocation(
                outcome=Failed(message=_error_message(e), kind="Error"),
                duration=time.monotonic() - start,
            )

        owned: list[asyncio.Future[Any]] = [
            task for task in asyncio.all_tasks() if task not in tasks_before
        ]
        spawned_threads = [
            thread
            for thread in threading.enumerate()
            if thread not in threads_before and thread.is_alive()
        ]

        if inspect.isawaitable(returned):
            owned.append(complete_from_awaitable(context, returned))
        elif not context.settled and not with_callback:
            if returned is None:
                # A None return may still settle later through the context
                timers = [t for t in scheduled_timers(loop) if t not in timers_before]
                owned.append(
                    complete_from_background(
                        context, tuple(owned), spawned_threads, timers
                    )
                )
            else:
                context.succeed(returned)

        try:
            return await self._observe(descriptor, context, start)
        finally:
            self._release(descriptor, owned, spawned_threads)

    async def _observe(
        self,
        descriptor: FunctionDescriptor,
        context: ExecutionContext,
        start: float,
    ) -> Invocation:
        """Wait on the completion channel until it settles or the timeout elapses."""
        timed_out = TimedOut(timeout=descriptor.timeout)

        if not context.settled:
            remaining = descriptor.timeout - (time.monotonic() - start)
            if remaining <= 0:
                return Invocation(outcome=timed_out, duration=time.monotonic() - start)

            waiter = asyncio.wrap_future(context.completion)
            done, _ = await asyncio.wait({waiter}, timeout=remaining)
            if not done:
                # Cancelling the waiter also closes the channel to late settlements
                waiter.cancel()
                log.debug(
                    "Stopped waiting for %s after %gs", descriptor.name, descriptor.timeout
                )
                return Invocation(outcome=timed_out, duration=time.monotonic() - start)
            waiter.exception()  # consumed here, classified from the channel below

        duration = time.monotonic() - start
        overran = duration > descriptor.timeout
        outcome: Outcome
        if (error := context.completion.exception()) is not None:
            outcome = Failed(
                message=_error_message(error), kind="Failed", timeout_exceeded=overran
            )
        elif overran:
            outcome = timed_out
        else:
            outcome = Succeeded(result=context.completion.result())

        return Invocation(outcome=outcome, duration=duration)

    def _release(
        self,
        descriptor: FunctionDescriptor,
        tasks: Sequence[asyncio.Future[Any]],
        threads: Sequence[threading.Thread],
    ) -> None:
        """Cancel leftover asyncio work; threads can only be detached."""
        for task in tasks:
            if not task.done():
                task.cancel()

        if alive := [thread for thread in threads if thread.is_alive()]:
            log.warning(
                "%s left %d background thread(s) running; they are detached",
                descriptor.name,
                len(alive),
            )


def _error_message(error: BaseException) -> str:
    if isinstance(error, SystemExit):
        return f"Handler exited with status {error.code}"
    return str(error) or type(error).__name__
