from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta
from typing import Any, Callable

from .config import Config
from .db import connect_db
from .discovery import discover_site
from .errors import categorize_error
from .models import DiscoveryResult, DiscoveryRunLog, ScheduleStatus, SiteConfig
from .storage import (
    get_site,
    list_sites,
    mark_site_run_failure,
    mark_site_run_success,
    record_discovery_run,
    require_site,
    set_site_active,
)
from .utils import log_event, parse_iso, utc_now, utc_now_iso


def compute_next_due(
    last_run: datetime | None, frequency_minutes: int, now: datetime
) -> datetime:
    if last_run is None:
        return now
    return last_run + timedelta(minutes=frequency_minutes)


def run_site_discovery(
    conn: Any,
    site: SiteConfig,
    fetcher: Any,
    config: Config,
    logger: logging.Logger,
    triggered_by: str = "schedule",
    clock: Callable[[], datetime] = utc_now,
) -> DiscoveryResult:
    result = discover_site(conn, site, fetcher, config, logger, triggered_by=triggered_by)
    if result.success:
        mark_site_run_success(conn, site.id, result.found, clock().isoformat())
    else:
        mark_site_run_failure(conn, site.id)
    return result


def compute_delay_seconds(
    last_run: datetime | None, frequency_minutes: int, now: datetime
) -> float:
    return (compute_next_due(last_run, frequency_minutes, now) - now).total_seconds()


class TimerRegistry:
    """At most one pending one-shot timer per site; arming replaces the old one."""

    def __init__(self, timer_factory: Callable[..., Any] = threading.Timer) -> None:
        self._factory = timer_factory
        self._timers: dict[str, Any] = {}
        self._due: dict[str, datetime] = {}
        self._lock = threading.Lock()

    def arm(
        self,
        site_id: str,
        delay_seconds: float,
        callback: Callable[[], Any],
        due: datetime,
    ) -> None:
        holder: dict[str, Any] = {}

        def fire() -> None:
            with self._lock:
                if self._timers.get(site_id) is holder.get("timer"):
                    self._timers.pop(site_id, None)
                    self._due.pop(site_id, None)
            callback()

        timer = self._factory(max(0.0, delay_seconds), fire)
        holder["timer"] = timer
        timer.daemon = True
        with self._lock:
            previous = self._timers.get(site_id)
            self._timers[site_id] = timer
            self._due[site_id] = due
        if previous is not None:
            previous.cancel()
        timer.start()

    def cancel(self, site_id: str) -> bool:
        with self._lock:
            timer = self._timers.pop(site_id, None)
            self._due.pop(site_id, None)
        if timer is None:
            return False
        timer.cancel()
        return True

    def cancel_all(self) -> None:
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
            self._due.clear()
        for timer in timers:
            timer.cancel()

    def is_armed(self, site_id: str) -> bool:
        with self._lock:
            return site_id in self._timers

    def next_due(self, site_id: str) -> datetime | None:
        with self._lock:
            return self._due.get(site_id)

    def armed_sites(self) -> list[str]:
        with self._lock:
            return sorted(self._timers)


class SiteScheduler:
    def __init__(
        self,
        db_path: str,
        fetcher: Any,
        config: Config,
        logger: logging.Logger | None = None,
        timer_factory: Callable[..., Any] = threading.Timer,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.db_path = db_path
        self.fetcher = fetcher
        self.config = config
        self.logger = logger or logging.getLogger("sitescout.scheduler")
        self.registry = TimerRegistry(timer_factory)
        self._clock = clock
        self._run_locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._last_results: dict[str, DiscoveryResult] = {}
        self._stopped = False

    def start(self) -> int:
        self._stopped = False
        if not self.config.scheduler.enabled:
            log_event(self.logger, logging.INFO, "scheduler_disabled")
            return 0
        with connect_db(self.db_path) as conn:
            sites = list_sites(conn, active_only=True)
        for site in sites:
            self.schedule_site(site)
        log_event(self.logger, logging.INFO, "scheduler_started", sites=len(sites))
        return len(sites)

    def stop(self) -> None:
        self._stopped = True
        self.registry.cancel_all()
        log_event(self.logger, logging.INFO, "scheduler_stopped")

    def schedule_site(self, site: SiteConfig) -> datetime | None:
        if self._stopped or not site.active or not self.config.scheduler.enabled:
            self.registry.cancel(site.id)
            return None
        now = self._clock()
        last_run = parse_iso(site.last_successful_run)
        due = compute_next_due(last_run, site.frequency_minutes, now)
        delay = compute_delay_seconds(last_run, site.frequency_minutes, now)
        if delay <= 0:
            delay = 0.0
            due = now
        site_id = site.id
        self.registry.arm(site_id, delay, lambda: self._execute(site_id, "schedule"), due)
        log_event(
            self.logger,
            logging.INFO,
            "site_scheduled",
            site=site_id,
            next_due=due.isoformat(),
            delay_s=int(delay),
        )
        return due

    def trigger_now(self, site_id: str) -> bool:
        self._require(site_id)
        self.registry.cancel(site_id)
        log_event(self.logger, logging.INFO, "site_triggered", site=site_id)
        return self._execute(site_id, "manual")

    def pause(self, site_id: str) -> None:
        self._require(site_id)
        self.registry.cancel(site_id)
        with connect_db(self.db_path) as conn:
            set_site_active(conn, site_id, False)
        log_event(self.logger, logging.INFO, "site_paused", site=site_id)

    def resume(self, site_id: str) -> datetime | None:
        self._require(site_id)
        with connect_db(self.db_path) as conn:
            set_site_active(conn, site_id, True)
            site = require_site(conn, site_id)
        log_event(self.logger, logging.INFO, "site_resumed", site=site_id)
        return self.schedule_site(site)

    def reschedule(self, site_id: str) -> datetime | None:
        site = self._require(site_id)
        self.registry.cancel(site_id)
        if not site.active:
            return None
        return self.schedule_site(site)

    def status(self, site_id: str) -> ScheduleStatus:
        site = self._require(site_id)
        due = self.registry.next_due(site_id)
        return ScheduleStatus(
            is_scheduled=self.registry.is_armed(site_id),
            next_due=due.isoformat() if due else None,
            last_run=site.last_successful_run,
            frequency_minutes=site.frequency_minutes,
        )

    def last_result(self, site_id: str) -> DiscoveryResult | None:
        return self._last_results.get(site_id)

    def is_running(self, site_id: str) -> bool:
        return self._run_lock(site_id).locked()

    def _require(self, site_id: str) -> SiteConfig:
        with connect_db(self.db_path) as conn:
            return require_site(conn, site_id)

    def _run_lock(self, site_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._run_locks.get(site_id)
            if lock is None:
                lock = threading.Lock()
                self._run_locks[site_id] = lock
            return lock

    def _execute(self, site_id: str, triggered_by: str) -> bool:
        lock = self._run_lock(site_id)
        if not lock.acquire(blocking=False):
            log_event(self.logger, logging.INFO, "discovery_already_running", site=site_id)
            return False
        try:
            succeeded = self._run_once(site_id, triggered_by)
        finally:
            lock.release()
        log_event(self.logger, logging.DEBUG, "site_run_finished", site=site_id, success=succeeded)
        self._rearm(site_id)
        return True

    def _run_once(self, site_id: str, triggered_by: str) -> bool:
        conn = None
        site = None
        try:
            conn = connect_db(self.db_path)
            site = get_site(conn, site_id)
            if site is None:
                log_event(self.logger, logging.WARNING, "scheduled_site_missing", site=site_id)
                return False
            result = run_site_discovery(
                conn,
                site,
                self.fetcher,
                self.config,
                self.logger,
                triggered_by=triggered_by,
                clock=self._clock,
            )
            self._last_results[site_id] = result
            return result.success
        except Exception as exc:  # noqa: BLE001
            log_event(
                self.logger,
                logging.ERROR,
                "scheduled_run_crashed",
                site=site_id,
                error=str(exc),
            )
            if conn is not None and site is not None:
                self._record_crash(conn, site, exc, triggered_by)
            return False
        finally:
            if conn is not None:
                conn.close()

    def _record_crash(self, conn: Any, site: SiteConfig, exc: BaseException, triggered_by: str) -> None:
        category = categorize_error(exc)
        try:
            conn.rollback()
            record_discovery_run(
                conn,
                DiscoveryRunLog(
                    id=None,
                    site_id=site.id,
                    listing_url=site.listing_url,
                    selector=site.listing_selectors.article_links,
                    outcome="failed",
                    found=0,
                    new=0,
                    duplicate=0,
                    skipped=0,
                    queued=0,
                    fetch_ms=0,
                    parse_ms=0,
                    total_ms=0,
                    fetch_method=site.fetch_strategy,
                    http_status=None,
                    sample_urls=[],
                    error_category=category,
                    error_message=str(exc),
                    triggered_by=triggered_by,
                    executed_at=utc_now_iso(),
                ),
            )
            mark_site_run_failure(conn, site.id)
        except Exception as record_exc:  # noqa: BLE001
            log_event(
                self.logger,
                logging.ERROR,
                "run_log_write_failed",
                site=site.id,
                error=str(record_exc),
            )
        self._last_results[site.id] = DiscoveryResult(
            success=False,
            found=0,
            new=0,
            duplicate=0,
            skipped=0,
            queued=0,
            duration_ms=0,
            error=str(exc),
            error_category=category,
        )

    def _rearm(self, site_id: str) -> None:
        if self._stopped or not self.config.scheduler.enabled:
            return
        try:
            with connect_db(self.db_path) as conn:
                site = get_site(conn, site_id)
        except Exception as exc:  # noqa: BLE001
            log_event(self.logger, logging.ERROR, "rearm_failed", site=site_id, error=str(exc))
            return
        if site is None or not site.active:
            log_event(self.logger, logging.INFO, "site_not_rearmed", site=site_id)
            return
        self.schedule_site(site)
