import logging
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from sitescout.config import default_config
from sitescout.errors import NetworkError
from sitescout.scheduler import SiteScheduler, TimerRegistry, compute_delay_seconds, compute_next_due
from sitescout.storage import get_site, list_discovery_runs, mark_site_run_success

from conftest import FakeFetcher, TimerFactory, listing_html

LISTING = "https://news.example.com/latest"
NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def _scheduler(tmp_path, fetcher, timers, config=None):
    return SiteScheduler(
        str(tmp_path / "state.sqlite3"),
        fetcher,
        config or default_config(),
        logger=logging.getLogger("sitescout.test"),
        timer_factory=timers,
        clock=lambda: NOW,
    )


def test_next_due_is_last_run_plus_frequency():
    last = NOW - timedelta(minutes=10)
    assert compute_next_due(last, 60, NOW) == last + timedelta(minutes=60)
    assert compute_next_due(None, 60, NOW) == NOW
    assert compute_delay_seconds(last, 60, NOW) == 50 * 60
    assert compute_delay_seconds(NOW - timedelta(hours=5), 60, NOW) <= 0


def test_registry_keeps_one_timer_per_site():
    timers = TimerFactory()
    registry = TimerRegistry(timers)
    registry.arm("a", 10, lambda: None, NOW)
    registry.arm("a", 20, lambda: None, NOW + timedelta(seconds=20))
    assert len(timers.live()) == 1
    assert timers.live()[0].delay == 20
    assert timers.live()[0].daemon is True
    assert registry.next_due("a") == NOW + timedelta(seconds=20)
    assert registry.cancel("a") is True
    assert registry.cancel("a") is False
    assert timers.live() == []


def test_start_arms_active_sites_with_catch_up(tmp_path, conn, make_site):
    make_site()
    make_site(id="paused", name="Paused", active=False)
    stale = make_site(id="stale", name="Stale")
    mark_site_run_success(conn, stale.id, 1, (NOW - timedelta(hours=3)).isoformat())

    timers = TimerFactory()
    scheduler = _scheduler(tmp_path, FakeFetcher(), timers)
    assert scheduler.start() == 2
    assert scheduler.registry.armed_sites() == ["example-news", "stale"]
    assert all(timer.delay == 0 for timer in timers.live())


def test_timer_fire_runs_discovery_and_rearms(tmp_path, conn, make_site):
    make_site()
    timers = TimerFactory()
    scheduler = _scheduler(tmp_path, FakeFetcher({LISTING: listing_html(4)}), timers)
    scheduler.start()

    timers.live()[0].fire()

    site = get_site(conn, "example-news")
    assert site.successful_runs == 1
    assert site.total_urls_found == 4
    assert site.last_successful_run == NOW.isoformat()
    live = timers.live()
    assert len(live) == 1
    assert live[0].delay == 60 * 60
    assert scheduler.last_result("example-news").new == 4


def test_failure_keeps_last_success_and_next_due(tmp_path, conn, make_site):
    site = make_site()
    previous = (NOW - timedelta(hours=2)).isoformat()
    mark_site_run_success(conn, site.id, 2, previous)
    due_before = compute_next_due(NOW - timedelta(hours=2), 60, NOW)

    timers = TimerFactory()
    scheduler = _scheduler(tmp_path, FakeFetcher(error=NetworkError("connection reset")), timers)
    assert scheduler.trigger_now(site.id) is True

    refreshed = get_site(conn, site.id)
    assert refreshed.last_successful_run == previous
    assert refreshed.failed_runs == 1
    runs, _ = list_discovery_runs(conn, site.id)
    assert runs[0].outcome == "failed"
    assert runs[0].error_category == "network"
    assert runs[0].triggered_by == "manual"
    assert compute_next_due(datetime.fromisoformat(refreshed.last_successful_run), 60, NOW) == due_before
    assert timers.live()[0].delay == 0
    assert scheduler.status(site.id).next_due == NOW.isoformat()


def test_failure_before_due_keeps_original_cadence(tmp_path, conn, make_site):
    site = make_site()
    mark_site_run_success(conn, site.id, 2, (NOW - timedelta(minutes=20)).isoformat())

    timers = TimerFactory()
    scheduler = _scheduler(tmp_path, FakeFetcher(error=NetworkError("connection reset")), timers)
    scheduler.trigger_now(site.id)

    assert timers.live()[0].delay == 40 * 60
    assert scheduler.status(site.id).next_due == (NOW + timedelta(minutes=40)).isoformat()


def test_pause_resume_and_status(tmp_path, conn, make_site):
    site = make_site()
    timers = TimerFactory()
    scheduler = _scheduler(tmp_path, FakeFetcher(), timers)
    scheduler.start()

    scheduler.pause(site.id)
    assert get_site(conn, site.id).active is False
    assert scheduler.status(site.id).is_scheduled is False
    assert timers.live() == []

    due = scheduler.resume(site.id)
    assert due == NOW
    status = scheduler.status(site.id)
    assert status.is_scheduled is True
    assert status.frequency_minutes == 60
    assert get_site(conn, site.id).active is True


def test_trigger_is_rejected_while_run_in_flight(tmp_path, make_site):
    site = make_site()
    scheduler = _scheduler(tmp_path, FakeFetcher({LISTING: listing_html(3)}), TimerFactory())
    lock = scheduler._run_lock(site.id)
    lock.acquire()
    try:
        assert scheduler.is_running(site.id) is True
        assert scheduler.trigger_now(site.id) is False
    finally:
        lock.release()
    assert scheduler.trigger_now(site.id) is True


def test_unknown_site_raises(tmp_path):
    scheduler = _scheduler(tmp_path, FakeFetcher(), TimerFactory())
    with pytest.raises(ValueError, match="site_not_found"):
        scheduler.trigger_now("nope")
    with pytest.raises(ValueError, match="site_not_found"):
        scheduler.pause("nope")


def test_stop_cancels_timers_and_blocks_rearm(tmp_path, make_site):
    make_site()
    timers = TimerFactory()
    scheduler = _scheduler(tmp_path, FakeFetcher({LISTING: listing_html(3)}), timers)
    scheduler.start()
    pending = timers.live()[0]
    scheduler.stop()
    assert timers.live() == []
    pending.fire()
    assert timers.live() == []


def test_disabled_scheduler_arms_nothing(tmp_path, make_site):
    site = make_site()
    config = default_config()
    config = replace(config, scheduler=replace(config.scheduler, enabled=False))
    timers = TimerFactory()
    scheduler = _scheduler(tmp_path, FakeFetcher({LISTING: listing_html(3)}), timers, config=config)
    assert scheduler.start() == 0

    assert scheduler.reschedule(site.id) is None
    assert scheduler.resume(site.id) is None
    assert scheduler.trigger_now(site.id) is True
    assert scheduler.last_result(site.id).success is True
    assert scheduler.registry.armed_sites() == []
    assert timers.timers == []


def test_pause_during_run_records_result_without_rearming(tmp_path, conn, make_site):
    site = make_site()
    timers = TimerFactory()

    class PausingFetcher(FakeFetcher):
        def fetch(self, url, strategy, options=None):
            scheduler.pause(site.id)
            return super().fetch(url, strategy, options)

    scheduler = _scheduler(tmp_path, PausingFetcher({LISTING: listing_html(3)}), timers)
    scheduler.start()
    timers.live()[0].fire()

    refreshed = get_site(conn, site.id)
    assert refreshed.active is False
    assert refreshed.successful_runs == 1
    assert list_discovery_runs(conn, site.id)[0][0].outcome == "success"
    assert timers.live() == []
    assert scheduler.status(site.id).is_scheduled is False
