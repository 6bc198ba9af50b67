"""
Per-tournament mutual exclusion and post-commit background work.

Rules:
- At most one result/propagation mutation per tournament is in flight
- Different tournaments never wait on each other
- The lock is held until the owning transaction has committed, so the
  next holder always reads the previous holder's writes
- Side effects that may be slow (announcements) run as background tasks
  scheduled after commit and never block the approval path
"""
import asyncio
import logging
import weakref
from contextlib import asynccontextmanager
from typing import Awaitable, Callable, Dict, Set

from matchday.repositories import TournamentRepository

logger = logging.getLogger(__name__)


class TournamentLockRegistry:
    """
    asyncio.Lock per tournament id, scoped to the running event loop.

    A lock lives only while someone holds or waits for it; the last
    holder out removes it.
    """

    def __init__(self):
        self._locks: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, Dict[int, _LockEntry]]" = (
            weakref.WeakKeyDictionary()
        )

    def _loop_locks(self) -> Dict[int, "_LockEntry"]:
        return self._locks.setdefault(asyncio.get_running_loop(), {})

    def is_locked(self, tournament_id: int) -> bool:
        entry = self._loop_locks().get(tournament_id)
        return entry is not None and entry.lock.locked()

    def active_count(self) -> int:
        """Locks currently held or waited on."""
        return len(self._loop_locks())

    @asynccontextmanager
    async def hold(self, tournament_id: int):
        locks = self._loop_locks()
        entry = locks.get(tournament_id)
        if entry is None:
            entry = locks[tournament_id] = _LockEntry()
        elif entry.lock.locked():
            logger.debug(f"Waiting for tournament {tournament_id} lock")

        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0 and locks.get(tournament_id) is entry:
                del locks[tournament_id]


class _LockEntry:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = asyncio.Lock()
        self.users = 0


tournament_locks = TournamentLockRegistry()


@asynccontextmanager
async def locked_tournament(db, tournament_id: int, notifications=None, locks: TournamentLockRegistry = None):
    """
    Serialize work on one tournament.

    Yields the tournament row read under SELECT ... FOR UPDATE (None if it
    does not exist). Commits when the block completes, rolls back and drops
    queued notifications when it raises, and flushes notifications only
    after the lock is released.
    """
    registry = locks or tournament_locks
    async with registry.hold(tournament_id):
        try:
            tournament = await TournamentRepository(db).lock(tournament_id)
            yield tournament
            await db.commit()
        except Exception:
            await db.rollback()
            if notifications is not None:
                notifications.discard()
            raise
    if notifications is not None:
        await notifications.flush()


# =============================================================================
# Post-commit background tasks
# =============================================================================

_background_tasks: Set[asyncio.Task] = set()


def schedule_after_commit(
    job: Callable[[], Awaitable[None]],
    name: str = "post-commit",
) -> asyncio.Task:
    """
    Run job() in the background. Call only after the transaction commits.

    Failures are logged; they never propagate to the request that
    scheduled the job.
    """
    async def runner():
        try:
            await job()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Background job '{name}' failed: {type(e).__name__}: {e}")

    task = asyncio.create_task(runner(), name=name)
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


async def wait_for_background_tasks(timeout: float = None):
    """Wait until every scheduled job has finished (tests, shutdown)."""
    while _background_tasks:
        pending = list(_background_tasks)
        done, not_done = await asyncio.wait(pending, timeout=timeout)
        if not_done:
            logger.warning(f"{len(not_done)} background jobs still running after {timeout}s")
            return


async def cancel_background_tasks():
    """Cancel jobs still running at shutdown."""
    if _background_tasks:
        logger.warning(f"Cancelling {len(_background_tasks)} background jobs")
    for task in list(_background_tasks):
        task.cancel()
    if _background_tasks:
        await asyncio.gather(*_background_tasks, return_exceptions=True)
