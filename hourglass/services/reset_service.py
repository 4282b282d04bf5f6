"""
hourglass.services.reset_service — Central Reset Scheduler
===========================================================

Resets member counters at the right moment *in each member's own
timezone*, plus one server-calendar reset for house leaderboards.

Every pass is **candidate-then-verify**:

1. A cheap query selects members whose reset cursor is old enough that a
   reset *could* be due (``last_daily_reset`` older than
   ``DAILY_RESET_MIN_AGE_HOURS``, never set, or older than the member's
   last timezone change).  A cursor always holds the *reset instant* of the
   local day (or month) it closed, never the wall time the pass ran, so a
   late or recovered reset cannot push the next one out of the window.
2. Each candidate is re-checked against its own calendar: the local day
   (or month) of *now* must differ from the local day (or month) of the
   cursor, and *now* must be past that day's reset instant (local midnight,
   or ``DST_SAFE_RESET_HOUR`` on a transition day).
3. The reset itself re-runs that check inside the transaction with the
   member row locked, so running a pass twice (or a forced pass, or the
   startup recovery pass) never resets anyone twice.

Members are processed in small batches with a pause between them.  A
failure is recorded against that member (id, zone, operation) and the batch
carries on; a pass reports successful / skipped / failed counts.

The sync passes (``process_*``) run on a worker thread via ``run_db``.
:class:`ResetScheduler` wraps them for the bot's task loops with
re-entrancy guards and persisted status (``scheduler_runs``), which the API
process reads back with :func:`get_scheduler_status`.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import or_, select, text, update
from sqlalchemy.orm import Session

from hourglass.constants import (
    DAILY_RESET_BATCH_SIZE,
    DAILY_RESET_MIN_AGE_HOURS,
    MONTHLY_RESET_BATCH_SIZE,
    MONTHLY_RESET_MIN_AGE_DAYS,
    REFERENCE_TIMEZONE,
    RESET_BATCH_PAUSE_SECONDS,
)
from hourglass.database.engine import get_session, run_db
from hourglass.database.models import (
    DailyVoiceStats,
    Member,
    MonthlyVoiceSummary,
    SchedulerRun,
)
from hourglass.engine.timezones import (
    as_utc,
    is_valid_timezone,
    local_date,
    now_in,
    reset_instant,
    today_in,
    utc_now,
    year_month,
)
from hourglass.services.member_service import get_member_or_raise
from hourglass.services.session_service import recover_open_sessions, split_stale_sessions
from hourglass.services.streak_service import lapse_if_broken
from hourglass.services.team_service import run_global_house_reset
from hourglass.services.timezone_service import TimezoneService

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from hourglass.config import HourglassConfig
    from hourglass.engine.cache import StatsCache

logger = logging.getLogger(__name__)

DAILY_JOB = "daily_reset"
MONTHLY_JOB = "monthly_reset"
GLOBAL_JOB = "global_reset"
RECOVERY_JOB = "recovery"
JOBS = (DAILY_JOB, MONTHLY_JOB, GLOBAL_JOB, RECOVERY_JOB)

# Errors kept on the scheduler_runs row for inspection
MAX_STORED_ERRORS = 50

# Never a Discord snowflake
HEALTH_CHECK_MEMBER_ID = 0


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class ResetFailure:
    member_id: int
    timezone: str
    operation: str
    error: str

    def to_dict(self) -> dict:
        return {
            "member_id": str(self.member_id),
            "timezone": self.timezone,
            "operation": self.operation,
            "error": self.error,
        }


@dataclass
class BatchResult:
    operation: str
    candidates: int = 0
    successful: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list[ResetFailure] = field(default_factory=list)
    reset_ids: list[int] = field(default_factory=list)
    started_at: datetime | None = None
    finished_at: datetime | None = None
    stopped_early: bool = False

    def to_dict(self) -> dict:
        return {
            "operation": self.operation,
            "candidates": self.candidates,
            "successful": self.successful,
            "skipped": self.skipped,
            "failed": self.failed,
            "errors": [e.to_dict() for e in self.errors],
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "stopped_early": self.stopped_early,
        }


# ---------------------------------------------------------------------------
# Due checks (pure)
# ---------------------------------------------------------------------------
def _zone_of(member_zone: str | None) -> str:
    return member_zone if member_zone and is_valid_timezone(member_zone) else REFERENCE_TIMEZONE


def daily_reset_due(zone: str, cursor: datetime | None, now: datetime) -> bool:
    """Has the member's local day advanced past the cursor's local day?"""
    today = today_in(zone, now)
    if cursor is not None and local_date(zone, cursor) >= today:
        return False
    return as_utc(now) >= reset_instant(zone, today)


def monthly_reset_due(zone: str, cursor: datetime | None, now: datetime) -> bool:
    """Has the member's local month advanced past the cursor's local month?"""
    today = today_in(zone, now)
    if cursor is not None:
        last = local_date(zone, cursor)
        if (last.year, last.month) >= (today.year, today.month):
            return False
    return as_utc(now) >= reset_instant(zone, today.replace(day=1))


# ---------------------------------------------------------------------------
# Candidate selection
# ---------------------------------------------------------------------------
def _candidates(
    engine: Engine,
    cursor_col,
    min_age: timedelta,
    now: datetime,
    due: Callable[[str, datetime | None, datetime], bool],
) -> list[tuple[int, str]]:
    threshold = now - min_age
    stmt = select(Member.id, Member.timezone, cursor_col).order_by(Member.timezone, Member.id)
    if min_age > timedelta(0):
        stmt = stmt.where(or_(
            cursor_col.is_(None),
            cursor_col <= threshold,
            Member.timezone_set_at > cursor_col,
        ))
    with Session(engine) as session:
        rows = session.execute(stmt).all()

    verified = []
    for member_id, zone, cursor in rows:
        zone = _zone_of(zone)
        if due(zone, as_utc(cursor), now):
            verified.append((member_id, zone))
    return verified


def find_daily_candidates(
    engine: Engine,
    *,
    now: datetime | None = None,
    min_age: timedelta = timedelta(hours=DAILY_RESET_MIN_AGE_HOURS),
) -> list[tuple[int, str]]:
    """``(member_id, zone)`` pairs whose local day has rolled over since their last reset.

    ``min_age=timedelta(0)`` disables the coarse filter (every member is
    verified), which is what recovery and forced passes use.
    """
    now = as_utc(now) if now is not None else utc_now()
    return _candidates(engine, Member.last_daily_reset, min_age, now, daily_reset_due)


def find_monthly_candidates(
    engine: Engine,
    *,
    now: datetime | None = None,
    min_age: timedelta = timedelta(days=MONTHLY_RESET_MIN_AGE_DAYS),
) -> list[tuple[int, str]]:
    now = as_utc(now) if now is not None else utc_now()
    return _candidates(engine, Member.last_monthly_reset, min_age, now, monthly_reset_due)


# ---------------------------------------------------------------------------
# Single-member resets (one transaction each)
# ---------------------------------------------------------------------------
def reset_member_daily(engine: Engine, member_id: int, *, now: datetime | None = None) -> bool:
    """Reset one member's daily state if their local day has rolled over.

    Zeroes the live daily counters, archives earlier ``daily_voice_stats``
    rows, lapses a broken streak and advances the cursor.  Returns ``False``
    (and writes nothing) when the reset is not due.

    Raises
    ------
    MemberNotFoundError
        If *member_id* does not exist.
    """
    now = as_utc(now) if now is not None else utc_now()
    with get_session(engine) as session:
        member = get_member_or_raise(session, member_id, for_update=True)
        zone = _zone_of(member.timezone)
        if not daily_reset_due(zone, as_utc(member.last_daily_reset), now):
            return False

        today = today_in(zone, now)
        if member.daily_date is None or member.daily_date < today:
            member.daily_date = today
            member.daily_minutes = 0
            member.daily_points = 0
            member.daily_limit_reached = False

        session.execute(
            update(DailyVoiceStats)
            .where(
                DailyVoiceStats.member_id == member_id,
                DailyVoiceStats.date < today,
                DailyVoiceStats.archived.is_(False),
            )
            .values(archived=True)
        )
        lapse_if_broken(member, today)
        member.last_daily_reset = reset_instant(zone, today)

    logger.debug("Daily reset applied for %s (%s, %s)", member_id, zone, today)
    return True


def reset_member_monthly(engine: Engine, member_id: int, *, now: datetime | None = None) -> bool:
    """Archive and zero one member's monthly totals if their local month rolled over.

    A member who has never had a monthly reset only gets the cursor
    stamped: whatever they hold was earned this month.

    Raises
    ------
    MemberNotFoundError
        If *member_id* does not exist.
    """
    now = as_utc(now) if now is not None else utc_now()
    with get_session(engine) as session:
        member = get_member_or_raise(session, member_id, for_update=True)
        zone = _zone_of(member.timezone)
        cursor = as_utc(member.last_monthly_reset)
        if not monthly_reset_due(zone, cursor, now):
            return False

        month_start = reset_instant(zone, today_in(zone, now).replace(day=1))
        if cursor is None:
            member.last_monthly_reset = month_start
            logger.debug("Monthly cursor initialised for %s (%s)", member_id, zone)
            return True

        closing = year_month(local_date(zone, cursor))
        summary = session.scalar(
            select(MonthlyVoiceSummary).where(
                MonthlyVoiceSummary.member_id == member_id,
                MonthlyVoiceSummary.year_month == closing,
            )
        )
        if summary is None:
            session.add(MonthlyVoiceSummary(
                member_id=member_id,
                year_month=closing,
                total_hours=member.monthly_hours or 0.0,
                total_points=member.monthly_points or 0,
            ))
        else:
            summary.total_hours = member.monthly_hours or 0.0
            summary.total_points = member.monthly_points or 0

        member.monthly_hours = 0.0
        member.monthly_points = 0
        member.last_monthly_reset = month_start

    logger.info("Monthly reset applied for %s (%s, closed %s)", member_id, zone, closing)
    return True


# ---------------------------------------------------------------------------
# Batched passes
# ---------------------------------------------------------------------------
def _chunks(items: list, size: int) -> Iterable[list]:
    size = max(int(size), 1)
    for i in range(0, len(items), size):
        yield items[i:i + size]


def _run_batches(
    operation: str,
    candidates: list[tuple[int, str]],
    reset_one: Callable[[int], bool],
    *,
    batch_size: int,
    pause_seconds: float,
    sleep: Callable[[float], None],
    should_stop: Callable[[], bool] | None,
    now: datetime,
) -> BatchResult:
    result = BatchResult(operation=operation, candidates=len(candidates), started_at=now)
    batches = list(_chunks(candidates, batch_size))
    for index, batch in enumerate(batches):
        for member_id, zone in batch:
            try:
                if reset_one(member_id):
                    result.successful += 1
                    result.reset_ids.append(member_id)
                else:
                    result.skipped += 1
            except Exception as exc:
                result.failed += 1
                result.errors.append(ResetFailure(
                    member_id=member_id, timezone=zone, operation=operation, error=repr(exc),
                ))
                logger.exception(
                    "%s failed for member %s (%s)", operation, member_id, zone,
                    extra={"member_id": member_id, "zone": zone, "operation": operation},
                )
        if index + 1 < len(batches):
            if should_stop is not None and should_stop():
                result.stopped_early = True
                logger.info("%s stopping after batch %d/%d", operation, index + 1, len(batches))
                break
            sleep(pause_seconds)
    result.finished_at = utc_now()
    return result


def process_daily_resets(
    engine: Engine,
    *,
    now: datetime | None = None,
    batch_size: int = DAILY_RESET_BATCH_SIZE,
    pause_seconds: float = RESET_BATCH_PAUSE_SECONDS,
    min_age: timedelta = timedelta(hours=DAILY_RESET_MIN_AGE_HOURS),
    cache: StatsCache | None = None,
    sleep: Callable[[float], None] = time.sleep,
    should_stop: Callable[[], bool] | None = None,
) -> BatchResult:
    """One daily pass over every member whose local day has rolled over."""
    now = as_utc(now) if now is not None else utc_now()
    candidates = find_daily_candidates(engine, now=now, min_age=min_age)
    result = _run_batches(
        DAILY_JOB, candidates,
        lambda member_id: reset_member_daily(engine, member_id, now=now),
        batch_size=batch_size, pause_seconds=pause_seconds, sleep=sleep,
        should_stop=should_stop, now=now,
    )
    if cache is not None:
        for member_id in result.reset_ids:
            cache.invalidate_member(member_id)
    logger.info(
        "Daily reset pass: %d candidates, %d reset, %d skipped, %d failed",
        result.candidates, result.successful, result.skipped, result.failed,
    )
    return result


def process_monthly_resets(
    engine: Engine,
    *,
    now: datetime | None = None,
    batch_size: int = MONTHLY_RESET_BATCH_SIZE,
    pause_seconds: float = RESET_BATCH_PAUSE_SECONDS * 2,
    min_age: timedelta = timedelta(days=MONTHLY_RESET_MIN_AGE_DAYS),
    cache: StatsCache | None = None,
    sleep: Callable[[float], None] = time.sleep,
    should_stop: Callable[[], bool] | None = None,
) -> BatchResult:
    """One monthly pass over every member whose local month has rolled over."""
    now = as_utc(now) if now is not None else utc_now()
    candidates = find_monthly_candidates(engine, now=now, min_age=min_age)
    result = _run_batches(
        MONTHLY_JOB, candidates,
        lambda member_id: reset_member_monthly(engine, member_id, now=now),
        batch_size=batch_size, pause_seconds=pause_seconds, sleep=sleep,
        should_stop=should_stop, now=now,
    )
    if cache is not None and result.successful:
        for member_id in result.reset_ids:
            cache.invalidate_member(member_id)
        cache.invalidate_leaderboards()
    logger.info(
        "Monthly reset pass: %d candidates, %d reset, %d skipped, %d failed",
        result.candidates, result.successful, result.skipped, result.failed,
    )
    return result


# ---------------------------------------------------------------------------
# Persisted status
# ---------------------------------------------------------------------------
def record_run(engine: Engine, job: str, result: BatchResult) -> None:
    """Fold one pass into the ``scheduler_runs`` row for *job*."""
    with get_session(engine) as session:
        row = session.get(SchedulerRun, job)
        if row is None:
            row = SchedulerRun(
                job=job, runs=0, successful_total=0, failed_total=0,
                last_successful=0, last_skipped=0, last_failed=0,
            )
            session.add(row)
        row.runs = (row.runs or 0) + 1
        row.last_started_at = result.started_at
        row.last_finished_at = result.finished_at
        row.successful_total = (row.successful_total or 0) + result.successful
        row.failed_total = (row.failed_total or 0) + result.failed
        row.last_successful = result.successful
        row.last_skipped = result.skipped
        row.last_failed = result.failed
        row.last_errors = [e.to_dict() for e in result.errors[:MAX_STORED_ERRORS]]


def get_scheduler_status(engine: Engine) -> dict:
    """Per-job run history as stored by the bot process."""
    with Session(engine) as session:
        rows = {r.job: r for r in session.scalars(select(SchedulerRun)).all()}

    jobs = {}
    for job in JOBS:
        row = rows.get(job)
        if row is None:
            jobs[job] = {
                "runs": 0, "last_started_at": None, "last_finished_at": None,
                "success_count": 0, "failure_count": 0,
                "last_successful": 0, "last_skipped": 0, "last_failed": 0,
                "last_errors": [],
            }
            continue
        started = as_utc(row.last_started_at)
        finished = as_utc(row.last_finished_at)
        jobs[job] = {
            "runs": row.runs,
            "last_started_at": started.isoformat() if started else None,
            "last_finished_at": finished.isoformat() if finished else None,
            "success_count": row.successful_total,
            "failure_count": row.failed_total,
            "last_successful": row.last_successful,
            "last_skipped": row.last_skipped,
            "last_failed": row.last_failed,
            "last_errors": row.last_errors or [],
        }

    return {
        "last_run_timestamps": {job: info["last_finished_at"] for job, info in jobs.items()},
        "success_count": sum(info["success_count"] for info in jobs.values()),
        "failure_count": sum(info["failure_count"] for info in jobs.values()),
        "jobs": jobs,
    }


def _global_as_batch(outcome, started: datetime) -> BatchResult:
    return BatchResult(
        operation=GLOBAL_JOB,
        candidates=len(outcome.reset) + len(outcome.initialised),
        successful=len(outcome.reset),
        skipped=len(outcome.initialised),
        started_at=started,
        finished_at=utc_now(),
    )


# ---------------------------------------------------------------------------
# Async scheduler façade
# ---------------------------------------------------------------------------
class ResetScheduler:
    """Drives the reset passes for the bot's task loops.

    Each job has its own :class:`asyncio.Lock`; a tick that arrives while
    the previous one is still running is skipped, never stacked.
    :meth:`stop` lets the current batch finish and refuses new ticks.

    Usage::

        scheduler = ResetScheduler(engine, cfg, timezones=tz, cache=stats_cache)
        await scheduler.run_daily()
        await scheduler.status()
    """

    def __init__(
        self,
        engine: Engine,
        config: HourglassConfig,
        *,
        timezones: TimezoneService | None = None,
        cache: StatsCache | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.engine = engine
        self.config = config
        self.timezones = timezones if timezones is not None else TimezoneService(engine)
        self.cache = cache
        self._clock = clock
        self._locks = {job: asyncio.Lock() for job in JOBS}
        self._started = False
        self._stopping = False
        self.last_health: dict | None = None

    # -------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------
    @property
    def is_running(self) -> bool:
        """Started and not stopped; see :attr:`running_jobs` for in-flight work."""
        return self._started

    @property
    def running_jobs(self) -> list[str]:
        return [job for job, lock in self._locks.items() if lock.locked()]

    @property
    def stopping(self) -> bool:
        return self._stopping

    def stop(self) -> None:
        self._started = False
        self._stopping = True
        logger.info("Reset scheduler stopping; in-flight batches will finish.")

    def start(self) -> None:
        self._started = True
        self._stopping = False
        logger.info("Reset scheduler started")

    async def _guarded(self, job: str, work: Callable[[datetime], BatchResult]) -> BatchResult | None:
        if self._stopping:
            logger.info("Scheduler stopped; skipping %s", job)
            return None
        lock = self._locks[job]
        if lock.locked():
            logger.warning("%s still running from the previous tick; skipping", job)
            return None
        async with lock:
            now = self._clock()
            result = await run_db(work, now)
            await run_db(record_run, self.engine, job, result)
            return result

    # -------------------------------------------------------------------
    # Jobs
    # -------------------------------------------------------------------
    async def run_daily(self, *, force: bool = False) -> BatchResult | None:
        reset_cfg = self.config.reset
        min_age = timedelta(0) if force else timedelta(hours=DAILY_RESET_MIN_AGE_HOURS)
        return await self._guarded(DAILY_JOB, lambda now: process_daily_resets(
            self.engine, now=now, batch_size=reset_cfg.daily_batch_size,
            pause_seconds=reset_cfg.batch_pause_seconds, min_age=min_age,
            cache=self.cache, should_stop=lambda: self._stopping,
        ))

    async def run_monthly(self, *, force: bool = False) -> BatchResult | None:
        reset_cfg = self.config.reset
        min_age = timedelta(0) if force else timedelta(days=MONTHLY_RESET_MIN_AGE_DAYS)
        return await self._guarded(MONTHLY_JOB, lambda now: process_monthly_resets(
            self.engine, now=now, batch_size=reset_cfg.monthly_batch_size,
            pause_seconds=reset_cfg.batch_pause_seconds * 2, min_age=min_age,
            cache=self.cache, should_stop=lambda: self._stopping,
        ))

    async def run_global(self) -> BatchResult | None:
        def work(now: datetime) -> BatchResult:
            outcome = run_global_house_reset(
                self.engine, self.config.server_timezone, now=now, cache=self.cache,
            )
            return _global_as_batch(outcome, now)

        return await self._guarded(GLOBAL_JOB, work)

    async def force_daily_reset(self) -> BatchResult | None:
        """Administrative daily pass over *every* member.  Idempotent."""
        logger.info("Forced daily reset requested")
        return await self.run_daily(force=True)

    async def force_monthly_reset(self) -> BatchResult | None:
        """Administrative monthly pass over *every* member.  Idempotent."""
        logger.info("Forced monthly reset requested")
        return await self.run_monthly(force=True)

    async def run_recovery(self, active: Iterable[tuple[int, int]] = ()) -> dict:
        """Startup catch-up: close crashed sessions, then run every pass unfiltered."""
        active = set(active)

        def recover(now: datetime) -> BatchResult:
            recovered = recover_open_sessions(
                self.engine, active=active, now=now, cache=self.cache,
            )
            split_stale_sessions(self.engine, now=now, cache=self.cache)
            return BatchResult(
                operation=RECOVERY_JOB,
                candidates=len(recovered.credited) + len(recovered.discarded)
                + len(recovered.failed),
                successful=len(recovered.credited) + len(recovered.discarded),
                skipped=len(recovered.kept_open),
                failed=len(recovered.failed),
                started_at=now,
                finished_at=utc_now(),
            )

        sessions = await self._guarded(RECOVERY_JOB, recover)
        daily = await self.run_daily(force=True)
        monthly = await self.run_monthly(force=True)
        houses = await self.run_global()
        return {
            "sessions": sessions.to_dict() if sessions else None,
            "daily": daily.to_dict() if daily else None,
            "monthly": monthly.to_dict() if monthly else None,
            "global": houses.to_dict() if houses else None,
        }

    # -------------------------------------------------------------------
    # Health & status
    # -------------------------------------------------------------------
    async def health_check(self) -> dict:
        """Verify DB connectivity and zone resolution.  Never raises.

        Zone resolution goes through the member resolver with an id no member
        has, so both the stored-zone lookup and the default zone are exercised.
        """
        checks: dict[str, bool] = {}
        try:
            await run_db(_ping, self.engine)
            checks["database"] = True
        except Exception:
            logger.exception("Health check: database unreachable")
            checks["database"] = False
        try:
            lookup = await run_db(self.timezones.lookup, HEALTH_CHECK_MEMBER_ID)
            now_in(lookup.or_default(self.config.server_timezone), self._clock())
            checks["timezones"] = True
        except Exception:
            logger.exception("Health check: timezone resolution failed")
            checks["timezones"] = False

        report = {
            "status": "healthy" if all(checks.values()) else "degraded",
            "checks": checks,
            "is_running": self.is_running,
            "checked_at": self._clock().isoformat(),
        }
        if report["status"] != "healthy":
            logger.warning("Reset scheduler health degraded: %s", checks)
        self.last_health = report
        return report

    async def status(self) -> dict:
        stored = await run_db(get_scheduler_status, self.engine)
        return {
            "is_running": self.is_running,
            "running_jobs": self.running_jobs,
            "stopping": self._stopping,
            "health": self.last_health,
            **stored,
        }


def _ping(engine: Engine) -> None:
    with Session(engine) as session:
        session.execute(text("SELECT 1"))
