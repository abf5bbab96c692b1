"""
Lumen — Background generation queue

Fire-and-forget execution of match-generation runs.  ``submit`` only takes
the run lock and schedules an asyncio task owned by the queue; it never waits
for the run itself.

Guarantees:
- Single flight per source user inside this process: a second ``submit``
  for a source whose run is still in flight is refused.
- When a Redis client is available, a ``SET NX EX`` lock keyed by source id
  also prevents overlapping runs across processes.  The lock is taken inside
  ``submit``, so a run held by another process is reported as refused.  If
  Redis itself errors, the run goes ahead under the in-process guard only.
- Nothing is lost silently: a run that raises is logged at error level and
  recorded in ``recent_failures``; completed runs are kept in
  ``recent_summaries``.
"""

from __future__ import annotations

import asyncio
import uuid
from collections import deque
from datetime import datetime, timezone
from typing import Any, Callable

import structlog

from app.config import get_settings

logger = structlog.get_logger("lumen.generation_queue")

LOCK_KEY_PREFIX = "match_generation:lock:"


class MatchGenerationQueue:
    """Owns background generation tasks and their failure log."""

    def __init__(
        self,
        service: Any,
        redis_getter: Callable[[], Any] | None = None,
        lock_ttl_seconds: int | None = None,
        history_size: int = 100,
    ) -> None:
        self.service = service
        self._redis_getter = redis_getter or (lambda: None)
        self.lock_ttl_seconds: int = (
            lock_ttl_seconds or get_settings().MATCH_RUN_LOCK_TTL_SECONDS
        )
        self._inflight: dict[uuid.UUID, asyncio.Task] = {}
        self._acquiring: set[uuid.UUID] = set()
        self.recent_failures: deque[dict] = deque(maxlen=history_size)
        self.recent_summaries: deque[dict] = deque(maxlen=history_size)

    # ── Public API ────────────────────────────────────────────────────────

    async def submit(self, source_id: uuid.UUID) -> bool:
        """Schedule a run for ``source_id``.

        Returns ``False`` without scheduling anything if a run for the same
        source is already in flight in this process, or if another process
        holds its Redis lock.
        """
        if self.is_running(source_id) or source_id in self._acquiring:
            logger.info("generation_already_running", source_id=str(source_id))
            return False

        self._acquiring.add(source_id)
        try:
            redis = self._redis_getter()
            lock_token = await self._acquire_lock(redis, source_id)
        finally:
            self._acquiring.discard(source_id)
        if lock_token is None:
            return False

        task = asyncio.create_task(
            self._run(source_id, redis, lock_token),
            name=f"match-generation:{source_id}",
        )
        self._inflight[source_id] = task
        task.add_done_callback(lambda t, sid=source_id: self._on_done(sid, t))

        logger.info("generation_submitted", source_id=str(source_id))
        return True

    def is_running(self, source_id: uuid.UUID) -> bool:
        task = self._inflight.get(source_id)
        return task is not None and not task.done()

    @property
    def inflight_count(self) -> int:
        return sum(1 for t in self._inflight.values() if not t.done())

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for in-flight runs; cancel whatever is left after ``timeout``."""
        tasks = [t for t in self._inflight.values() if not t.done()]
        if not tasks:
            return

        logger.info("generation_queue_draining", inflight=len(tasks))
        done, pending = await asyncio.wait(tasks, timeout=timeout)

        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning("generation_queue_drain_cancelled", cancelled=len(pending))

    # ── Task body ─────────────────────────────────────────────────────────

    async def _acquire_lock(self, redis: Any, source_id: uuid.UUID) -> str | None:
        """Token for the run lock; ``None`` if another process holds it.

        Without Redis, or when Redis errors, the token is still returned and
        the run is guarded in-process only.
        """
        lock_token = uuid.uuid4().hex
        if redis is None:
            return lock_token

        lock_key = f"{LOCK_KEY_PREFIX}{source_id}"
        try:
            acquired = await redis.set(
                lock_key, lock_token, nx=True, ex=self.lock_ttl_seconds
            )
        except Exception as exc:
            logger.warning(
                "generation_lock_unavailable",
                source_id=str(source_id),
                lock_key=lock_key,
                error=str(exc),
            )
            return lock_token

        if not acquired:
            logger.info(
                "generation_locked_elsewhere",
                source_id=str(source_id),
                lock_key=lock_key,
            )
            return None
        return lock_token

    async def _run(self, source_id: uuid.UUID, redis: Any, lock_token: str) -> None:
        try:
            summary = await self.service.generate_for_user(source_id)
            self.recent_summaries.append(summary.as_dict())
        finally:
            if redis is not None:
                await self._release_lock(
                    redis, f"{LOCK_KEY_PREFIX}{source_id}", lock_token
                )

    @staticmethod
    async def _release_lock(redis: Any, lock_key: str, lock_token: str) -> None:
        try:
            if await redis.get(lock_key) == lock_token:
                await redis.delete(lock_key)
        except Exception as exc:
            # The TTL still expires the lock.
            logger.warning("generation_lock_release_failed", lock_key=lock_key, error=str(exc))

    def _on_done(self, source_id: uuid.UUID, task: asyncio.Task) -> None:
        if self._inflight.get(source_id) is task:
            del self._inflight[source_id]

        if task.cancelled():
            logger.warning("generation_cancelled", source_id=str(source_id))
            return

        exc = task.exception()
        if exc is not None:
            self.recent_failures.append({
                "source_id": str(source_id),
                "error": str(exc),
                "error_type": type(exc).__name__,
                "failed_at": datetime.now(timezone.utc).isoformat(),
            })
            logger.error(
                "generation_failed",
                source_id=str(source_id),
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=exc,
            )
