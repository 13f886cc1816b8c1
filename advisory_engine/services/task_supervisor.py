"""
Task supervisor for concurrent session stages.

Spawns stage tasks, runs a per-task merge callback when the task resolves,
and tracks tasks per session so they can be cancelled or drained on
shutdown.
"""

import asyncio
import inspect
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog

from ..logging_config import configure_logging
from ..utils.date_utils import get_current_utc

configure_logging()
logger = structlog.get_logger(__name__)


class TaskPriority(str, Enum):
    """Task priority levels for shutdown ordering"""
    CRITICAL = "critical"  # Must complete before shutdown
    HIGH = "high"          # Should complete if possible
    NORMAL = "normal"      # Can be cancelled


class TaskInfo:
    """Information about a supervised task"""

    def __init__(
        self,
        task: asyncio.Task,
        name: str,
        session_id: Optional[str],
        priority: TaskPriority = TaskPriority.NORMAL,
    ):
        self.task = task
        self.name = name
        self.session_id = session_id
        self.priority = priority
        self.created_at: datetime = get_current_utc()
        self.cancelled = False

    def __repr__(self):
        return f"TaskInfo(name={self.name}, session={self.session_id}, done={self.task.done()})"


async def maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class TaskSupervisor:
    """Registry of in-flight stage tasks"""

    def __init__(self):
        self._tasks: Dict[str, TaskInfo] = {}
        self._shutting_down = False

    def spawn(
        self,
        coro: Awaitable[Any],
        *,
        name: str,
        session_id: Optional[str] = None,
        on_result: Optional[Callable[[Any], Any]] = None,
        on_error: Optional[Callable[[Exception], Any]] = None,
        priority: TaskPriority = TaskPriority.NORMAL,
    ) -> asyncio.Task:
        """Start ``coro`` and merge its outcome through the callbacks.

        ``on_result`` runs with the coroutine's return value. ``on_error``
        absorbs a failure; without it the exception stays on the task.
        """

        async def _run() -> Any:
            try:
                result = await coro
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if on_error is None:
                    raise
                await maybe_await(on_error(e))
                return None
            if on_result is not None:
                await maybe_await(on_result(result))
            return result

        task = asyncio.create_task(_run(), name=name)
        task_id = f"{name}_{id(task)}"
        self._tasks[task_id] = TaskInfo(task, name, session_id, priority)
        task.add_done_callback(lambda done: self._on_done(task_id, done))
        logger.debug("task_supervisor.spawned", task_id=task_id, session_id=session_id)
        return task

    def _on_done(self, task_id: str, task: asyncio.Task) -> None:
        info = self._tasks.pop(task_id, None)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(
                "task_supervisor.task_failed",
                task_id=task_id,
                session_id=info.session_id if info else None,
                error=str(exc),
            )

    def active(self, session_id: Optional[str] = None) -> List[Dict[str, Any]]:
        return [
            {
                "task_id": task_id,
                "name": info.name,
                "session_id": info.session_id,
                "priority": info.priority.value,
                "created_at": info.created_at.isoformat(),
                "cancelled": info.cancelled,
            }
            for task_id, info in self._tasks.items()
            if not info.task.done() and (session_id is None or info.session_id == session_id)
        ]

    def cancel_session(self, session_id: str, msg: Optional[str] = None) -> int:
        """Hard-cancel every task of one session; returns how many were cancelled."""
        cancelled = 0
        for info in list(self._tasks.values()):
            if info.session_id == session_id and not info.task.done():
                info.task.cancel(msg)
                info.cancelled = True
                cancelled += 1
        if cancelled:
            logger.info("task_supervisor.session_cancelled", session_id=session_id, tasks=cancelled)
        return cancelled

    async def graceful_shutdown(self, timeout: float = 30.0) -> Dict[str, str]:
        """Wait for critical/high tasks up to ``timeout``, cancel the rest."""
        self._shutting_down = True
        results: Dict[str, str] = {}
        snapshot = [(tid, info) for tid, info in self._tasks.items() if not info.task.done()]

        waitable = [info.task for _, info in snapshot if info.priority != TaskPriority.NORMAL]
        done: set = set()
        if waitable and timeout > 0:
            done, _ = await asyncio.wait(waitable, timeout=timeout)

        for task_id, info in snapshot:
            if info.task in done:
                results[task_id] = "completed"
            elif not info.task.done():
                info.task.cancel()
                info.cancelled = True
                results[task_id] = "cancelled"
            else:
                results[task_id] = "completed"

        pending = [info.task for _, info in snapshot]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        logger.info("task_supervisor.shutdown_complete", results=results)
        return results

    def is_shutting_down(self) -> bool:
        return self._shutting_down
