from __future__ import annotations

from typing import Any

from .extract import check_selector_syntax
from .models import (
    DEFAULT_RE_EXTRACTION_DAYS,
    FETCH_STRATEGIES,
    URL_STATUSES,
    ContentSelectors,
    DiscoveryRunLog,
    FetchSettings,
    ListingSelectors,
    SiteConfig,
    UrlTrackingRecord,
)
from .utils import (
    domain_of,
    json_dumps,
    json_loads,
    slugify,
    url_hash,
    utc_now_iso,
    utc_now_iso_offset,
)

_SITE_COLUMNS = """
    id, name, base_url, listing_url, test_url, active, listing_selectors_json,
    content_selectors_json, frequency_minutes, fetch_strategy, last_successful_run,
    fetch_settings_json, allow_re_extraction, re_extraction_days, successful_runs,
    failed_runs, total_urls_found, last_test_json
"""

_TRACKING_COLUMNS = """
    id, site_id, url, url_hash, domain, status, first_discovered_at, last_seen_at,
    times_discovered, title, image_url, allow_re_extraction, re_extraction_days,
    next_re_extraction_at, content_id, generated_content_id, published_id, attempts,
    last_attempt_at, failure_reason, queued_at, processed_at, processing_ms
"""

_RUN_COLUMNS = """
    id, site_id, listing_url, selector, outcome, found, new, duplicate, skipped, queued,
    fetch_ms, parse_ms, total_ms, fetch_method, http_status, sample_urls_json,
    error_category, error_message, triggered_by, executed_at
"""


def get_setting(conn: Any, key: str, default: Any = None) -> Any:
    row = conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
    if not row:
        return default
    return json_loads(row[0], default)


def set_setting(conn: Any, key: str, value: Any) -> None:
    conn.execute(
        """
        INSERT INTO settings (key, value, updated_at)
        VALUES (?, ?, ?)
        ON CONFLICT(key) DO UPDATE SET value=excluded.value, updated_at=excluded.updated_at
        """,
        (key, json_dumps(value), utc_now_iso()),
    )
    conn.commit()


def site_from_dict(
    data: dict[str, Any],
    existing: SiteConfig | None = None,
    default_re_extraction_days: int = DEFAULT_RE_EXTRACTION_DAYS,
) -> SiteConfig:
    name = str(data.get("name") or (existing.name if existing else "")).strip()
    if not name:
        raise ValueError("site_name_required")
    site_id = str(data.get("id") or (existing.id if existing else slugify(name)))
    base_url = str(data.get("base_url") or (existing.base_url if existing else "")).strip()
    listing_url = str(
        data.get("listing_url") or (existing.listing_url if existing else "")
    ).strip()
    if not base_url.startswith(("http://", "https://")):
        raise ValueError("invalid_base_url")
    if not listing_url.startswith(("http://", "https://")):
        raise ValueError("invalid_listing_url")

    listing_raw = data.get("listing_selectors")
    if listing_raw is None and existing:
        listing = existing.listing_selectors
    else:
        listing = _listing_selectors_from_dict(listing_raw or {})
    if not listing.article_links:
        raise ValueError("listing_selector_required")
    _check_selectors("listing", listing)
    content_raw = data.get("content_selectors")
    if content_raw is None and existing:
        content = existing.content_selectors
    else:
        content = _content_selectors_from_dict(content_raw or {})
    _check_selectors("content", content)
    settings_raw = data.get("fetch_settings")
    if settings_raw is None and existing:
        fetch_settings = existing.fetch_settings
    else:
        fetch_settings = _fetch_settings_from_dict(settings_raw or {})

    strategy = str(
        data.get("fetch_strategy") or (existing.fetch_strategy if existing else "static")
    )
    if strategy not in FETCH_STRATEGIES:
        raise ValueError("invalid_fetch_strategy")
    frequency = int(
        data.get("frequency_minutes") or (existing.frequency_minutes if existing else 60)
    )
    if frequency < 1:
        raise ValueError("invalid_frequency_minutes")
    re_days = int(
        data.get("re_extraction_days")
        or (existing.re_extraction_days if existing else default_re_extraction_days)
    )
    if re_days < 1:
        raise ValueError("invalid_re_extraction_days")

    return SiteConfig(
        id=site_id,
        name=name,
        base_url=base_url,
        listing_url=listing_url,
        test_url=data.get("test_url", existing.test_url if existing else None) or None,
        active=bool(data.get("active", existing.active if existing else True)),
        listing_selectors=listing,
        content_selectors=content,
        frequency_minutes=frequency,
        fetch_strategy=strategy,
        last_successful_run=existing.last_successful_run if existing else None,
        fetch_settings=fetch_settings,
        allow_re_extraction=bool(
            data.get(
                "allow_re_extraction", existing.allow_re_extraction if existing else False
            )
        ),
        re_extraction_days=re_days,
        successful_runs=existing.successful_runs if existing else 0,
        failed_runs=existing.failed_runs if existing else 0,
        total_urls_found=existing.total_urls_found if existing else 0,
        last_test=existing.last_test if existing else None,
    )


def site_to_dict(site: SiteConfig) -> dict[str, Any]:
    return {
        "id": site.id,
        "name": site.name,
        "base_url": site.base_url,
        "listing_url": site.listing_url,
        "test_url": site.test_url,
        "active": site.active,
        "listing_selectors": _listing_selectors_to_dict(site.listing_selectors),
        "content_selectors": _content_selectors_to_dict(site.content_selectors),
        "frequency_minutes": site.frequency_minutes,
        "fetch_strategy": site.fetch_strategy,
        "last_successful_run": site.last_successful_run,
        "fetch_settings": {
            "wait_for_selector": site.fetch_settings.wait_for_selector,
            "timeout_seconds": site.fetch_settings.timeout_seconds,
            "custom_headers": dict(site.fetch_settings.custom_headers),
            "max_urls_per_run": site.fetch_settings.max_urls_per_run,
        },
        "allow_re_extraction": site.allow_re_extraction,
        "re_extraction_days": site.re_extraction_days,
        "successful_runs": site.successful_runs,
        "failed_runs": site.failed_runs,
        "total_urls_found": site.total_urls_found,
        "last_test": site.last_test,
    }


def upsert_site(
    conn: Any,
    site_dict: dict[str, Any],
    default_re_extraction_days: int = DEFAULT_RE_EXTRACTION_DAYS,
) -> SiteConfig:
    existing = None
    if site_dict.get("id"):
        existing = get_site(conn, str(site_dict["id"]))
    site = site_from_dict(site_dict, existing, default_re_extraction_days)
    row = conn.execute("SELECT created_at FROM sites WHERE id = ?", (site.id,)).fetchone()
    created_at = row[0] if row else utc_now_iso()
    updated_at = utc_now_iso()
    conn.execute(
        """
        INSERT INTO sites
            (id, name, base_url, listing_url, test_url, active, listing_selectors_json,
             content_selectors_json, frequency_minutes, fetch_strategy, fetch_settings_json,
             allow_re_extraction, re_extraction_days, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            name=excluded.name,
            base_url=excluded.base_url,
            listing_url=excluded.listing_url,
            test_url=excluded.test_url,
            active=excluded.active,
            listing_selectors_json=excluded.listing_selectors_json,
            content_selectors_json=excluded.content_selectors_json,
            frequency_minutes=excluded.frequency_minutes,
            fetch_strategy=excluded.fetch_strategy,
            fetch_settings_json=excluded.fetch_settings_json,
            allow_re_extraction=excluded.allow_re_extraction,
            re_extraction_days=excluded.re_extraction_days,
            updated_at=excluded.updated_at
        """,
        (
            site.id,
            site.name,
            site.base_url,
            site.listing_url,
            site.test_url,
            1 if site.active else 0,
            json_dumps(_listing_selectors_to_dict(site.listing_selectors)),
            json_dumps(_content_selectors_to_dict(site.content_selectors)),
            site.frequency_minutes,
            site.fetch_strategy,
            json_dumps(site_to_dict(site)["fetch_settings"]),
            1 if site.allow_re_extraction else 0,
            site.re_extraction_days,
            created_at,
            updated_at,
        ),
    )
    conn.commit()
    return get_site(conn, site.id) or site


def get_site(conn: Any, site_id: str) -> SiteConfig | None:
    row = conn.execute(
        f"SELECT {_SITE_COLUMNS} FROM sites WHERE id = ?",
        (site_id,),
    ).fetchone()
    if not row:
        return None
    return _site_from_row(row)


def require_site(conn: Any, site_id: str) -> SiteConfig:
    site = get_site(conn, site_id)
    if site is None:
        raise ValueError("site_not_found")
    return site


def list_sites(conn: Any, active_only: bool = False) -> list[SiteConfig]:
    sql = f"SELECT {_SITE_COLUMNS} FROM sites"
    if active_only:
        sql += " WHERE active = 1"
    sql += " ORDER BY id"
    return [_site_from_row(row) for row in conn.execute(sql).fetchall()]


def set_site_active(conn: Any, site_id: str, active: bool) -> None:
    cursor = conn.execute(
        "UPDATE sites SET active = ?, updated_at = ? WHERE id = ?",
        (1 if active else 0, utc_now_iso(), site_id),
    )
    conn.commit()
    if cursor.rowcount == 0:
        raise ValueError("site_not_found")


def update_site_selectors(
    conn: Any,
    site_id: str,
    listing: ListingSelectors | None = None,
    content: ContentSelectors | None = None,
) -> SiteConfig:
    site = require_site(conn, site_id)
    listing = listing or site.listing_selectors
    content = content or site.content_selectors
    conn.execute(
        """
        UPDATE sites
        SET listing_selectors_json = ?, content_selectors_json = ?, updated_at = ?
        WHERE id = ?
        """,
        (
            json_dumps(_listing_selectors_to_dict(listing)),
            json_dumps(_content_selectors_to_dict(content)),
            utc_now_iso(),
            site_id,
        ),
    )
    conn.commit()
    return require_site(conn, site_id)


def set_site_last_test(conn: Any, site_id: str, result: dict[str, Any]) -> None:
    conn.execute(
        "UPDATE sites SET last_test_json = ?, updated_at = ? WHERE id = ?",
        (json_dumps(result), utc_now_iso(), site_id),
    )
    conn.commit()


def mark_site_run_success(conn: Any, site_id: str, urls_found: int, finished_at: str) -> None:
    conn.execute(
        """
        UPDATE sites
        SET last_successful_run = ?,
            successful_runs = successful_runs + 1,
            total_urls_found = total_urls_found + ?,
            updated_at = ?
        WHERE id = ?
        """,
        (finished_at, int(urls_found), utc_now_iso(), site_id),
    )
    conn.commit()


def mark_site_run_failure(conn: Any, site_id: str) -> None:
    conn.execute(
        "UPDATE sites SET failed_runs = failed_runs + 1, updated_at = ? WHERE id = ?",
        (utc_now_iso(), site_id),
    )
    conn.commit()


def delete_site(conn: Any, site_id: str) -> None:
    require_site(conn, site_id)
    row = conn.execute(
        "SELECT COUNT(*) FROM url_tracking WHERE site_id = ?", (site_id,)
    ).fetchone()
    if row and int(row[0]) > 0:
        raise ValueError("site_has_tracked_urls")
    conn.execute("DELETE FROM discovery_runs WHERE site_id = ?", (site_id,))
    conn.execute("DELETE FROM sites WHERE id = ?", (site_id,))
    conn.commit()


def insert_discovered_url(
    conn: Any,
    site: SiteConfig,
    url: str,
    title: str | None = None,
    image_url: str | None = None,
    now: str | None = None,
) -> bool:
    now = now or utc_now_iso()
    cursor = conn.execute(
        """
        INSERT OR IGNORE INTO url_tracking
            (site_id, url, url_hash, domain, status, first_discovered_at, last_seen_at,
             times_discovered, title, image_url, allow_re_extraction, re_extraction_days,
             attempts, created_at, updated_at)
        VALUES (?, ?, ?, ?, 'discovered', ?, ?, 1, ?, ?, ?, ?, 0, ?, ?)
        """,
        (
            site.id,
            url,
            url_hash(url),
            domain_of(url),
            now,
            now,
            title,
            image_url,
            1 if site.allow_re_extraction else 0,
            site.re_extraction_days,
            now,
            now,
        ),
    )
    return cursor.rowcount == 1


def touch_discovered_url(conn: Any, site_id: str, hashed: str, now: str | None = None) -> None:
    now = now or utc_now_iso()
    conn.execute(
        """
        UPDATE url_tracking
        SET last_seen_at = ?, times_discovered = times_discovered + 1, updated_at = ?
        WHERE site_id = ? AND url_hash = ?
        """,
        (now, now, site_id, hashed),
    )


def queue_url(conn: Any, site_id: str, hashed: str, now: str | None = None) -> bool:
    now = now or utc_now_iso()
    cursor = conn.execute(
        """
        UPDATE url_tracking
        SET status = 'queued', queued_at = ?, updated_at = ?
        WHERE site_id = ? AND url_hash = ? AND status NOT IN ('queued', 'processing')
        """,
        (now, now, site_id, hashed),
    )
    return cursor.rowcount == 1


def requeue_if_due(conn: Any, site_id: str, hashed: str, now: str | None = None) -> bool:
    now = now or utc_now_iso()
    cursor = conn.execute(
        """
        UPDATE url_tracking
        SET status = 'queued', queued_at = ?, updated_at = ?
        WHERE site_id = ? AND url_hash = ?
          AND allow_re_extraction = 1
          AND next_re_extraction_at IS NOT NULL
          AND next_re_extraction_at <= ?
          AND status NOT IN ('queued', 'processing')
        """,
        (now, now, site_id, hashed, now),
    )
    return cursor.rowcount == 1


def get_tracking_record(conn: Any, site_id: str, url: str) -> UrlTrackingRecord | None:
    row = conn.execute(
        f"SELECT {_TRACKING_COLUMNS} FROM url_tracking WHERE site_id = ? AND url_hash = ?",
        (site_id, url_hash(url)),
    ).fetchone()
    if not row:
        return None
    return _tracking_from_row(row)


def get_tracking_record_by_id(conn: Any, record_id: int) -> UrlTrackingRecord | None:
    row = conn.execute(
        f"SELECT {_TRACKING_COLUMNS} FROM url_tracking WHERE id = ?",
        (record_id,),
    ).fetchone()
    if not row:
        return None
    return _tracking_from_row(row)


def claim_queued_urls(
    conn: Any, limit: int = 10, site_id: str | None = None
) -> list[UrlTrackingRecord]:
    now = utc_now_iso()
    if conn.in_transaction:
        conn.commit()
    conn.execute("BEGIN IMMEDIATE")
    try:
        sql = "SELECT id FROM url_tracking WHERE status = 'queued'"
        params: list[Any] = []
        if site_id:
            sql += " AND site_id = ?"
            params.append(site_id)
        sql += " ORDER BY queued_at, id LIMIT ?"
        params.append(int(limit))
        ids = [row[0] for row in conn.execute(sql, tuple(params)).fetchall()]
        for record_id in ids:
            conn.execute(
                """
                UPDATE url_tracking
                SET status = 'processing', attempts = attempts + 1,
                    last_attempt_at = ?, updated_at = ?
                WHERE id = ?
                """,
                (now, now, record_id),
            )
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    records = []
    for record_id in ids:
        record = get_tracking_record_by_id(conn, record_id)
        if record:
            records.append(record)
    return records


def mark_url_completed(
    conn: Any,
    record_id: int,
    *,
    content_id: str | None = None,
    generated_content_id: str | None = None,
    published_id: str | None = None,
    processing_ms: int | None = None,
) -> None:
    record = get_tracking_record_by_id(conn, record_id)
    if record is None:
        raise ValueError("url_not_found")
    now = utc_now_iso()
    next_at = None
    if record.allow_re_extraction:
        next_at = utc_now_iso_offset(seconds=record.re_extraction_days * 86400)
    conn.execute(
        """
        UPDATE url_tracking
        SET status = 'completed', processed_at = ?, processing_ms = ?,
            content_id = COALESCE(?, content_id),
            generated_content_id = COALESCE(?, generated_content_id),
            published_id = COALESCE(?, published_id),
            next_re_extraction_at = ?, failure_reason = NULL, updated_at = ?
        WHERE id = ?
        """,
        (
            now,
            processing_ms,
            content_id,
            generated_content_id,
            published_id,
            next_at,
            now,
            record_id,
        ),
    )
    conn.commit()


def mark_url_failed(conn: Any, record_id: int, reason: str) -> None:
    _finish_url(conn, record_id, "failed", reason)


def mark_url_skipped(conn: Any, record_id: int, reason: str) -> None:
    _finish_url(conn, record_id, "skipped", reason)


def _finish_url(conn: Any, record_id: int, status: str, reason: str) -> None:
    now = utc_now_iso()
    cursor = conn.execute(
        """
        UPDATE url_tracking
        SET status = ?, failure_reason = ?, processed_at = ?, updated_at = ?
        WHERE id = ?
        """,
        (status, reason, now, now, record_id),
    )
    conn.commit()
    if cursor.rowcount == 0:
        raise ValueError("url_not_found")


def list_tracked_urls(
    conn: Any,
    site_id: str,
    status: str | None = None,
    limit: int = 50,
    skip: int = 0,
) -> tuple[list[UrlTrackingRecord], int]:
    where = "WHERE site_id = ?"
    params: list[Any] = [site_id]
    if status:
        if status not in URL_STATUSES:
            raise ValueError("invalid_status")
        where += " AND status = ?"
        params.append(status)
    total = conn.execute(
        f"SELECT COUNT(*) FROM url_tracking {where}", tuple(params)
    ).fetchone()[0]
    rows = conn.execute(
        f"""
        SELECT {_TRACKING_COLUMNS} FROM url_tracking {where}
        ORDER BY last_seen_at DESC, id DESC
        LIMIT ? OFFSET ?
        """,
        tuple(params + [int(limit), int(skip)]),
    ).fetchall()
    return [_tracking_from_row(row) for row in rows], int(total)


def count_urls_by_status(conn: Any, site_id: str | None = None) -> dict[str, int]:
    counts = {status: 0 for status in URL_STATUSES}
    sql = "SELECT status, COUNT(*) FROM url_tracking"
    params: tuple[Any, ...] = ()
    if site_id:
        sql += " WHERE site_id = ?"
        params = (site_id,)
    sql += " GROUP BY status"
    for status, count in conn.execute(sql, params).fetchall():
        counts[str(status)] = int(count)
    return counts


def record_discovery_run(conn: Any, log: DiscoveryRunLog) -> int:
    cursor = conn.execute(
        """
        INSERT INTO discovery_runs
            (site_id, listing_url, selector, outcome, found, new, duplicate, skipped,
             queued, fetch_ms, parse_ms, total_ms, fetch_method, http_status,
             sample_urls_json, error_category, error_message, triggered_by, executed_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            log.site_id,
            log.listing_url,
            log.selector,
            log.outcome,
            log.found,
            log.new,
            log.duplicate,
            log.skipped,
            log.queued,
            log.fetch_ms,
            log.parse_ms,
            log.total_ms,
            log.fetch_method,
            log.http_status,
            json_dumps(list(log.sample_urls)),
            log.error_category,
            log.error_message,
            log.triggered_by,
            log.executed_at,
        ),
    )
    conn.commit()
    return int(cursor.lastrowid)


def list_discovery_runs(
    conn: Any, site_id: str, limit: int = 20, skip: int = 0
) -> tuple[list[DiscoveryRunLog], int]:
    total = conn.execute(
        "SELECT COUNT(*) FROM discovery_runs WHERE site_id = ?", (site_id,)
    ).fetchone()[0]
    rows = conn.execute(
        f"""
        SELECT {_RUN_COLUMNS} FROM discovery_runs
        WHERE site_id = ?
        ORDER BY executed_at DESC, id DESC
        LIMIT ? OFFSET ?
        """,
        (site_id, int(limit), int(skip)),
    ).fetchall()
    return [_run_from_row(row) for row in rows], int(total)


def latest_discovery_run(conn: Any, site_id: str) -> DiscoveryRunLog | None:
    runs, _ = list_discovery_runs(conn, site_id, limit=1, skip=0)
    return runs[0] if runs else None


def discovery_run_totals(conn: Any, site_id: str) -> dict[str, int]:
    row = conn.execute(
        """
        SELECT COUNT(*),
               COALESCE(SUM(CASE WHEN outcome = 'success' THEN 1 ELSE 0 END), 0),
               COALESCE(SUM(CASE WHEN outcome = 'partial' THEN 1 ELSE 0 END), 0),
               COALESCE(SUM(CASE WHEN outcome = 'failed' THEN 1 ELSE 0 END), 0),
               COALESCE(SUM(found), 0),
               COALESCE(SUM(new), 0),
               COALESCE(AVG(total_ms), 0)
        FROM discovery_runs
        WHERE site_id = ?
        """,
        (site_id,),
    ).fetchone()
    return {
        "runs": int(row[0]),
        "success": int(row[1]),
        "partial": int(row[2]),
        "failed": int(row[3]),
        "found": int(row[4]),
        "new": int(row[5]),
        "avg_total_ms": int(round(row[6] or 0)),
    }


def _site_from_row(row: Any) -> SiteConfig:
    return SiteConfig(
        id=row[0],
        name=row[1],
        base_url=row[2],
        listing_url=row[3],
        test_url=row[4],
        active=bool(row[5]),
        listing_selectors=_listing_selectors_from_dict(json_loads(row[6], {})),
        content_selectors=_content_selectors_from_dict(json_loads(row[7], {})),
        frequency_minutes=int(row[8]),
        fetch_strategy=row[9],
        last_successful_run=row[10],
        fetch_settings=_fetch_settings_from_dict(json_loads(row[11], {})),
        allow_re_extraction=bool(row[12]),
        re_extraction_days=int(row[13]),
        successful_runs=int(row[14]),
        failed_runs=int(row[15]),
        total_urls_found=int(row[16]),
        last_test=json_loads(row[17], None),
    )


def _tracking_from_row(row: Any) -> UrlTrackingRecord:
    return UrlTrackingRecord(
        id=int(row[0]),
        site_id=row[1],
        url=row[2],
        url_hash=row[3],
        domain=row[4],
        status=row[5],
        first_discovered_at=row[6],
        last_seen_at=row[7],
        times_discovered=int(row[8]),
        title=row[9],
        image_url=row[10],
        allow_re_extraction=bool(row[11]),
        re_extraction_days=int(row[12]),
        next_re_extraction_at=row[13],
        content_id=row[14],
        generated_content_id=row[15],
        published_id=row[16],
        attempts=int(row[17]),
        last_attempt_at=row[18],
        failure_reason=row[19],
        queued_at=row[20],
        processed_at=row[21],
        processing_ms=row[22],
    )


def _run_from_row(row: Any) -> DiscoveryRunLog:
    return DiscoveryRunLog(
        id=int(row[0]),
        site_id=row[1],
        listing_url=row[2],
        selector=row[3],
        outcome=row[4],
        found=int(row[5]),
        new=int(row[6]),
        duplicate=int(row[7]),
        skipped=int(row[8]),
        queued=int(row[9]),
        fetch_ms=int(row[10]),
        parse_ms=int(row[11]),
        total_ms=int(row[12]),
        fetch_method=row[13],
        http_status=row[14],
        sample_urls=json_loads(row[15], []),
        error_category=row[16],
        error_message=row[17],
        triggered_by=row[18],
        executed_at=row[19],
    )


def _check_selectors(group: str, selectors: ListingSelectors | ContentSelectors) -> None:
    for field_name, selector in vars(selectors).items():
        if selector and not check_selector_syntax(selector)[0]:
            raise ValueError(f"invalid_{group}_selector_{field_name}")


def _listing_selectors_from_dict(data: dict[str, Any]) -> ListingSelectors:
    return ListingSelectors(
        article_links=str(data.get("article_links") or ""),
        title=data.get("title") or None,
        image=data.get("image") or None,
        date=data.get("date") or None,
        category=data.get("category") or None,
    )


def _listing_selectors_to_dict(selectors: ListingSelectors) -> dict[str, Any]:
    return {
        "article_links": selectors.article_links,
        "title": selectors.title,
        "image": selectors.image,
        "date": selectors.date,
        "category": selectors.category,
    }


def _content_selectors_from_dict(data: dict[str, Any]) -> ContentSelectors:
    return ContentSelectors(
        title=str(data.get("title") or ""),
        content=str(data.get("content") or ""),
        image=data.get("image") or None,
        date=data.get("date") or None,
        author=data.get("author") or None,
        category=data.get("category") or None,
        tags=data.get("tags") or None,
        excerpt=data.get("excerpt") or None,
    )


def _content_selectors_to_dict(selectors: ContentSelectors) -> dict[str, Any]:
    return {
        "title": selectors.title,
        "content": selectors.content,
        "image": selectors.image,
        "date": selectors.date,
        "author": selectors.author,
        "category": selectors.category,
        "tags": selectors.tags,
        "excerpt": selectors.excerpt,
    }


def _fetch_settings_from_dict(data: dict[str, Any]) -> FetchSettings:
    timeout = data.get("timeout_seconds")
    max_urls = data.get("max_urls_per_run")
    headers = data.get("custom_headers") or {}
    if not isinstance(headers, dict):
        raise ValueError("invalid_custom_headers")
    return FetchSettings(
        wait_for_selector=data.get("wait_for_selector") or None,
        timeout_seconds=int(timeout) if timeout else None,
        custom_headers={str(k): str(v) for k, v in headers.items()},
        max_urls_per_run=int(max_urls) if max_urls else None,
    )
