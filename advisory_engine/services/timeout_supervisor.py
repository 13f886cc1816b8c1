"""
Timeout Supervisor

Watchdog for the Analyzing stage. Two independent timers are armed when
analysis starts:

* hard limit: authoritative; calls ``on_hard_timeout`` so the owner can
  finish with whatever text has accumulated.
* stuck limit: advisory; if nothing has streamed yet it calls ``on_stuck``
  and nothing else. It never cancels or forces completion.

``disarm()`` cancels whichever timers are still pending.
"""

import asyncio
from typing import Any, Callable, Optional

import structlog

from ..core import config
from ..logging_config import configure_logging
from .task_supervisor import maybe_await

configure_logging()
logger = structlog.get_logger(__name__)


class TimeoutSupervisor:
    def __init__(
        self,
        *,
        content_length: Callable[[], int],
        on_hard_timeout: Callable[[], Any],
        on_stuck: Optional[Callable[[float], Any]] = None,
        hard_limit: float = config.ANALYSIS_HARD_TIMEOUT_SECONDS,
        stuck_limit: float = config.ANALYSIS_STUCK_TIMEOUT_SECONDS,
        session_id: Optional[str] = None,
    ):
        self.content_length = content_length
        self.on_hard_timeout = on_hard_timeout
        self.on_stuck = on_stuck
        self.hard_limit = hard_limit
        self.stuck_limit = stuck_limit
        self.session_id = session_id
        self.hard_fired = False
        self.stuck_fired = False
        self._started_at: Optional[float] = None
        self._hard_task: Optional[asyncio.Task] = None
        self._stuck_task: Optional[asyncio.Task] = None

    @property
    def armed(self) -> bool:
        return any(t is not None and not t.done() for t in (self._hard_task, self._stuck_task))

    def elapsed(self) -> float:
        if self._started_at is None:
            return 0.0
        return asyncio.get_running_loop().time() - self._started_at

    def arm(self) -> None:
        if self.armed:
            return
        self._started_at = asyncio.get_running_loop().time()
        self._hard_task = asyncio.create_task(self._hard_timer(), name=f"hard_timeout:{self.session_id}")
        if self.on_stuck is not None and self.stuck_limit < self.hard_limit:
            self._stuck_task = asyncio.create_task(self._stuck_timer(), name=f"stuck_timeout:{self.session_id}")
        logger.debug(
            "timeout_supervisor.armed",
            session_id=self.session_id,
            hard_limit=self.hard_limit,
            stuck_limit=self.stuck_limit,
        )

    def disarm(self) -> None:
        current = asyncio.current_task()
        for task in (self._hard_task, self._stuck_task):
            if task is not None and task is not current and not task.done():
                task.cancel()

    async def _hard_timer(self) -> None:
        await asyncio.sleep(self.hard_limit)
        self.hard_fired = True
        if self._stuck_task is not None and not self._stuck_task.done():
            self._stuck_task.cancel()
        logger.warning(
            "timeout_supervisor.hard_limit_reached",
            session_id=self.session_id,
            accumulated_chars=self.content_length(),
        )
        await maybe_await(self.on_hard_timeout())

    async def _stuck_timer(self) -> None:
        await asyncio.sleep(self.stuck_limit)
        if self.hard_fired or self.content_length() > 0:
            return
        self.stuck_fired = True
        elapsed = self.elapsed()
        logger.warning("timeout_supervisor.stuck_detected", session_id=self.session_id, elapsed=elapsed)
        try:
            await maybe_await(self.on_stuck(elapsed))
        except Exception as e:
            logger.error("timeout_supervisor.stuck_callback_failed", session_id=self.session_id, error=str(e))
