from __future__ import annotations

import logging
import threading
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Iterator

from fastapi import Depends, FastAPI, HTTPException
from pydantic import BaseModel

from .browser import BrowserSession
from .config import (
    Config,
    ConfigError,
    bootstrap_runtime_config,
    get_runtime_config,
    get_state_db_path,
    load_runtime_config,
    set_runtime_config,
)
from .db import DBConn, connect_db
from .errors import OnboardingError
from .fetcher import PageFetcher
from .onboarding import (
    analyze_content,
    analyze_listing,
    create_site_with_ai,
    recalibrate_site,
    try_content_selectors,
    try_listing_selector,
)
from .scheduler import SiteScheduler
from .services.sites_service import (
    create_site,
    get_site_dict,
    list_site_dicts,
    paginated_runs,
    paginated_urls,
    remove_site,
    site_stats,
    update_site,
)
from .utils import configure_logging, log_event

app = FastAPI(title="SiteScout Admin API")

_STATE: dict[str, Any] = {"fetcher": None, "scheduler": None}
_STATE_LOCK = threading.Lock()


class SiteRequest(BaseModel):
    id: str | None = None
    name: str | None = None
    base_url: str | None = None
    listing_url: str | None = None
    test_url: str | None = None
    active: bool | None = None
    listing_selectors: dict[str, Any] | None = None
    content_selectors: dict[str, Any] | None = None
    frequency_minutes: int | None = None
    fetch_strategy: str | None = None
    fetch_settings: dict[str, Any] | None = None
    allow_re_extraction: bool | None = None
    re_extraction_days: int | None = None


class AnalyzeRequest(BaseModel):
    url: str


class ListingSelectorTestRequest(BaseModel):
    url: str
    selector: str


class ContentSelectorTestRequest(BaseModel):
    url: str
    selectors: dict[str, Any]


class CreateSiteRequest(BaseModel):
    name: str
    base_url: str
    listing_url: str
    test_url: str | None = None
    frequency_minutes: int | None = None
    fetch_strategy: str = "rendered"
    persist: bool = False


class RuntimeConfigRequest(BaseModel):
    config: dict


def get_conn() -> Iterator[DBConn]:
    conn = connect_db(get_state_db_path())
    try:
        bootstrap_runtime_config(conn)
        yield conn
    finally:
        conn.close()


def get_config(conn: DBConn = Depends(get_conn)) -> Config:
    try:
        return load_runtime_config(conn)
    except ConfigError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc


def get_fetcher(config: Config = Depends(get_config)) -> PageFetcher:
    with _STATE_LOCK:
        if _STATE["fetcher"] is None:
            session = BrowserSession(
                headless=config.fetch.headless,
                logger=logging.getLogger("sitescout.browser"),
            )
            _STATE["fetcher"] = PageFetcher(
                config.fetch, session, logging.getLogger("sitescout.fetcher")
            )
        return _STATE["fetcher"]


def get_scheduler(
    config: Config = Depends(get_config),
    fetcher: PageFetcher = Depends(get_fetcher),
) -> SiteScheduler:
    with _STATE_LOCK:
        if _STATE["scheduler"] is None:
            _STATE["scheduler"] = SiteScheduler(
                get_state_db_path(),
                fetcher,
                config,
                logging.getLogger("sitescout.scheduler"),
            )
        return _STATE["scheduler"]


def _logger() -> logging.Logger:
    return logging.getLogger("sitescout.admin")


def _value_error(exc: ValueError) -> HTTPException:
    detail = str(exc)
    if detail.endswith("_not_found"):
        return HTTPException(status_code=404, detail=detail)
    if detail in ("site_exists", "site_has_tracked_urls"):
        return HTTPException(status_code=409, detail=detail)
    return HTTPException(status_code=400, detail=detail)


def _onboarding_error(exc: OnboardingError) -> HTTPException:
    return HTTPException(status_code=422, detail=exc.to_dict())


@app.on_event("startup")
def _startup() -> None:
    conn = connect_db(get_state_db_path())
    try:
        bootstrap_runtime_config(conn)
        config = load_runtime_config(conn)
    finally:
        conn.close()
    scheduler = get_scheduler(config, get_fetcher(config))
    count = scheduler.start()
    log_event(_logger(), logging.INFO, "admin_started", scheduled_sites=count)


@app.on_event("shutdown")
def _shutdown() -> None:
    with _STATE_LOCK:
        scheduler = _STATE["scheduler"]
        fetcher = _STATE["fetcher"]
        _STATE["scheduler"] = None
        _STATE["fetcher"] = None
    if scheduler is not None:
        scheduler.stop()
    if fetcher is not None:
        fetcher.close()


@app.get("/")
def root() -> dict[str, str]:
    return {"service": "SiteScout Admin API"}


@app.get("/health")
def health() -> dict[str, object]:
    return {
        "ok": True,
        "version": _get_version(),
        "time": datetime.now(tz=timezone.utc).isoformat(),
    }


@app.get("/admin/config/runtime")
def runtime_config_get(conn: DBConn = Depends(get_conn)) -> dict[str, object]:
    try:
        cfg = get_runtime_config(conn)
    except ConfigError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"config": cfg}


@app.put("/admin/config/runtime")
def runtime_config_set(
    payload: RuntimeConfigRequest, conn: DBConn = Depends(get_conn)
) -> dict[str, object]:
    try:
        set_runtime_config(conn, payload.config)
    except ConfigError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"status": "ok"}


@app.get("/sites")
def sites_list(active_only: bool = False, conn: DBConn = Depends(get_conn)) -> list[dict[str, object]]:
    return list_site_dicts(conn, active_only=active_only)


@app.post("/sites")
def sites_create(
    payload: SiteRequest,
    conn: DBConn = Depends(get_conn),
    config: Config = Depends(get_config),
    scheduler: SiteScheduler = Depends(get_scheduler),
) -> dict[str, object]:
    try:
        site = create_site(
            conn,
            payload.model_dump(exclude_none=True),
            config.discovery.default_re_extraction_days,
        )
    except ValueError as exc:
        raise _value_error(exc) from exc
    scheduler.reschedule(site["id"])
    return site


@app.get("/sites/{site_id}")
def sites_read(site_id: str, conn: DBConn = Depends(get_conn)) -> dict[str, object]:
    site = get_site_dict(conn, site_id)
    if not site:
        raise HTTPException(status_code=404, detail="site_not_found")
    return site


@app.put("/sites/{site_id}")
def sites_update(
    site_id: str,
    payload: SiteRequest,
    conn: DBConn = Depends(get_conn),
    scheduler: SiteScheduler = Depends(get_scheduler),
) -> dict[str, object]:
    try:
        site = update_site(conn, site_id, payload.model_dump(exclude_none=True))
    except ValueError as exc:
        raise _value_error(exc) from exc
    scheduler.reschedule(site_id)
    return site


@app.delete("/sites/{site_id}")
def sites_delete(
    site_id: str,
    conn: DBConn = Depends(get_conn),
    scheduler: SiteScheduler = Depends(get_scheduler),
) -> dict[str, str]:
    try:
        remove_site(conn, site_id)
    except ValueError as exc:
        raise _value_error(exc) from exc
    scheduler.registry.cancel(site_id)
    return {"status": "deleted"}


@app.post("/extraction/trigger/{site_id}")
def extraction_trigger(
    site_id: str, scheduler: SiteScheduler = Depends(get_scheduler)
) -> dict[str, object]:
    try:
        ran = scheduler.trigger_now(site_id)
    except ValueError as exc:
        raise _value_error(exc) from exc
    if not ran:
        raise HTTPException(status_code=409, detail="run_in_progress")
    result = scheduler.last_result(site_id)
    return {"triggered": True, "result": asdict(result) if result else None}


@app.post("/extraction/pause/{site_id}")
def extraction_pause(
    site_id: str, scheduler: SiteScheduler = Depends(get_scheduler)
) -> dict[str, object]:
    try:
        scheduler.pause(site_id)
        status = scheduler.status(site_id)
    except ValueError as exc:
        raise _value_error(exc) from exc
    return {"status": "paused", "schedule": asdict(status)}


@app.post("/extraction/resume/{site_id}")
def extraction_resume(
    site_id: str, scheduler: SiteScheduler = Depends(get_scheduler)
) -> dict[str, object]:
    try:
        scheduler.resume(site_id)
        status = scheduler.status(site_id)
    except ValueError as exc:
        raise _value_error(exc) from exc
    return {"status": "resumed", "schedule": asdict(status)}


@app.post("/extraction/reschedule/{site_id}")
def extraction_reschedule(
    site_id: str, scheduler: SiteScheduler = Depends(get_scheduler)
) -> dict[str, object]:
    try:
        scheduler.reschedule(site_id)
        status = scheduler.status(site_id)
    except ValueError as exc:
        raise _value_error(exc) from exc
    return {"status": "rescheduled", "schedule": asdict(status)}


@app.get("/extraction/status/{site_id}")
def extraction_status(
    site_id: str, scheduler: SiteScheduler = Depends(get_scheduler)
) -> dict[str, object]:
    try:
        status = scheduler.status(site_id)
    except ValueError as exc:
        raise _value_error(exc) from exc
    data: dict[str, object] = asdict(status)
    data["running"] = scheduler.is_running(site_id)
    return data


@app.get("/extraction/logs/{site_id}")
def extraction_logs(
    site_id: str, limit: int = 20, skip: int = 0, conn: DBConn = Depends(get_conn)
) -> dict[str, object]:
    try:
        return paginated_runs(conn, site_id, limit=limit, skip=skip)
    except ValueError as exc:
        raise _value_error(exc) from exc


@app.get("/extraction/urls/{site_id}")
def extraction_urls(
    site_id: str,
    status: str | None = None,
    limit: int = 50,
    skip: int = 0,
    conn: DBConn = Depends(get_conn),
) -> dict[str, object]:
    try:
        return paginated_urls(conn, site_id, status=status, limit=limit, skip=skip)
    except ValueError as exc:
        raise _value_error(exc) from exc


@app.get("/extraction/stats/{site_id}")
def extraction_stats(site_id: str, conn: DBConn = Depends(get_conn)) -> dict[str, object]:
    try:
        return site_stats(conn, site_id)
    except ValueError as exc:
        raise _value_error(exc) from exc


@app.post("/ai/analyze-listing")
def ai_analyze_listing(
    payload: AnalyzeRequest,
    config: Config = Depends(get_config),
    fetcher: PageFetcher = Depends(get_fetcher),
) -> dict[str, object]:
    try:
        return analyze_listing(fetcher, payload.url, config, _logger())
    except OnboardingError as exc:
        raise _onboarding_error(exc) from exc


@app.post("/ai/analyze-content")
def ai_analyze_content(
    payload: AnalyzeRequest,
    config: Config = Depends(get_config),
    fetcher: PageFetcher = Depends(get_fetcher),
) -> dict[str, object]:
    try:
        return analyze_content(fetcher, payload.url, config, _logger())
    except OnboardingError as exc:
        raise _onboarding_error(exc) from exc


@app.post("/selectors/test-listing")
def selectors_test_listing(
    payload: ListingSelectorTestRequest,
    config: Config = Depends(get_config),
    fetcher: PageFetcher = Depends(get_fetcher),
) -> dict[str, object]:
    return try_listing_selector(fetcher, payload.url, payload.selector, config, _logger())


@app.post("/selectors/test-content")
def selectors_test_content(
    payload: ContentSelectorTestRequest,
    config: Config = Depends(get_config),
    fetcher: PageFetcher = Depends(get_fetcher),
) -> dict[str, object]:
    return try_content_selectors(fetcher, payload.url, payload.selectors, config, _logger())


@app.post("/ai/create-site")
def ai_create_site(
    payload: CreateSiteRequest,
    conn: DBConn = Depends(get_conn),
    config: Config = Depends(get_config),
    fetcher: PageFetcher = Depends(get_fetcher),
    scheduler: SiteScheduler = Depends(get_scheduler),
) -> dict[str, object]:
    try:
        result = create_site_with_ai(
            conn,
            fetcher,
            config,
            _logger(),
            name=payload.name,
            base_url=payload.base_url,
            listing_url=payload.listing_url,
            test_url=payload.test_url,
            frequency_minutes=payload.frequency_minutes,
            fetch_strategy=payload.fetch_strategy,
            persist=payload.persist,
        )
    except OnboardingError as exc:
        raise _onboarding_error(exc) from exc
    except ValueError as exc:
        raise _value_error(exc) from exc
    if result["persisted"]:
        scheduler.reschedule(result["site"]["id"])
    return result


@app.post("/ai/recalibrate/{site_id}")
def ai_recalibrate(
    site_id: str,
    conn: DBConn = Depends(get_conn),
    config: Config = Depends(get_config),
    fetcher: PageFetcher = Depends(get_fetcher),
) -> dict[str, object]:
    try:
        return recalibrate_site(conn, fetcher, config, _logger(), site_id)
    except OnboardingError as exc:
        raise _onboarding_error(exc) from exc
    except ValueError as exc:
        raise _value_error(exc) from exc


def _setup_logging() -> None:
    configure_logging("sitescout.admin")


_setup_logging()


def _get_version() -> str:
    try:
        from importlib.metadata import version

        return version("sitescout")
    except Exception:  # noqa: BLE001
        return "unknown"
