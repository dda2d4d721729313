from __future__ import annotations

from dataclasses import asdict
from typing import Any

from ..models import DEFAULT_RE_EXTRACTION_DAYS
from ..storage import (
    count_urls_by_status,
    delete_site,
    discovery_run_totals,
    get_site,
    latest_discovery_run,
    list_discovery_runs,
    list_sites,
    list_tracked_urls,
    require_site,
    site_to_dict,
    upsert_site,
)
from ..utils import slugify

MAX_PAGE_SIZE = 200


def list_site_dicts(conn: Any, active_only: bool = False) -> list[dict[str, Any]]:
    return [site_to_dict(site) for site in list_sites(conn, active_only=active_only)]


def get_site_dict(conn: Any, site_id: str) -> dict[str, Any] | None:
    site = get_site(conn, site_id)
    return site_to_dict(site) if site else None


def create_site(
    conn: Any,
    payload: dict[str, Any],
    default_re_extraction_days: int = DEFAULT_RE_EXTRACTION_DAYS,
) -> dict[str, Any]:
    payload = dict(payload)
    site_id = str(payload.get("id") or slugify(str(payload.get("name") or "")))
    if get_site(conn, site_id):
        raise ValueError("site_exists")
    payload["id"] = site_id
    site = upsert_site(conn, payload, default_re_extraction_days)
    return site_to_dict(site)


def update_site(conn: Any, site_id: str, payload: dict[str, Any]) -> dict[str, Any]:
    require_site(conn, site_id)
    payload = dict(payload)
    payload["id"] = site_id
    return site_to_dict(upsert_site(conn, payload))


def remove_site(conn: Any, site_id: str) -> None:
    delete_site(conn, site_id)


def import_sites(
    conn: Any,
    sites: list[dict[str, Any]],
    default_re_extraction_days: int = DEFAULT_RE_EXTRACTION_DAYS,
) -> list[str]:
    imported = []
    for payload in sites:
        site = upsert_site(conn, payload, default_re_extraction_days)
        imported.append(site.id)
    return imported


def paginated_runs(conn: Any, site_id: str, limit: int = 20, skip: int = 0) -> dict[str, Any]:
    require_site(conn, site_id)
    limit, skip = _page(limit, skip)
    runs, total = list_discovery_runs(conn, site_id, limit=limit, skip=skip)
    return {
        "items": [asdict(run) for run in runs],
        "total": total,
        "limit": limit,
        "skip": skip,
        "hasMore": skip + len(runs) < total,
    }


def paginated_urls(
    conn: Any,
    site_id: str,
    status: str | None = None,
    limit: int = 50,
    skip: int = 0,
) -> dict[str, Any]:
    require_site(conn, site_id)
    limit, skip = _page(limit, skip)
    records, total = list_tracked_urls(conn, site_id, status=status, limit=limit, skip=skip)
    return {
        "items": [asdict(record) for record in records],
        "total": total,
        "limit": limit,
        "skip": skip,
        "hasMore": skip + len(records) < total,
        "counts": count_urls_by_status(conn, site_id),
    }


def site_stats(conn: Any, site_id: str) -> dict[str, Any]:
    site = require_site(conn, site_id)
    latest = latest_discovery_run(conn, site_id)
    totals = discovery_run_totals(conn, site_id)
    counts = count_urls_by_status(conn, site_id)
    completed_runs = site.successful_runs + site.failed_runs
    return {
        "site_id": site.id,
        "active": site.active,
        "last_successful_run": site.last_successful_run,
        "successful_runs": site.successful_runs,
        "failed_runs": site.failed_runs,
        "success_rate": round(site.successful_runs / completed_runs, 3) if completed_runs else None,
        "total_urls_found": site.total_urls_found,
        "tracked_urls": sum(counts.values()),
        "url_counts": counts,
        "runs": totals,
        "last_run": asdict(latest) if latest else None,
        "last_test": site.last_test,
    }


def _page(limit: int, skip: int) -> tuple[int, int]:
    limit = max(1, min(int(limit), MAX_PAGE_SIZE))
    skip = max(0, int(skip))
    return limit, skip
