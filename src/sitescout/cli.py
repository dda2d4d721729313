from __future__ import annotations

import argparse
import json
import logging
import os
import time
from dataclasses import asdict

from .browser import BrowserSession
from .config import (
    ConfigError,
    bootstrap_runtime_config,
    get_state_db_path,
    import_config_file,
    load_runtime_config,
    load_sites_file,
)
from .db import connect_db
from .errors import OnboardingError
from .fetcher import PageFetcher
from .onboarding import (
    analyze_content,
    analyze_listing,
    create_site_with_ai,
    try_content_selectors,
    try_listing_selector,
)
from .scheduler import SiteScheduler, compute_next_due, run_site_discovery
from .services.sites_service import import_sites, paginated_runs, paginated_urls
from .storage import get_site, list_sites, set_site_active, site_to_dict
from .utils import configure_logging, log_event, parse_iso, utc_now


def _setup_logging() -> logging.Logger:
    return configure_logging("sitescout")


def _open(args: argparse.Namespace, logger: logging.Logger):
    if args.data_dir:
        os.environ["SCOUT_DATA_DIR"] = args.data_dir
    conn = connect_db(get_state_db_path())
    try:
        bootstrap_runtime_config(conn)
        config = load_runtime_config(conn)
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        conn.close()
        return None, None
    return conn, config


def _build_fetcher(config, logger: logging.Logger) -> PageFetcher:
    session = BrowserSession(headless=config.fetch.headless, logger=logger)
    return PageFetcher(config.fetch, session, logger)


def _dump(logger: logging.Logger, payload: object) -> None:
    logger.info(json.dumps(payload, indent=2, sort_keys=True, default=str))


def _cmd_sites_import(args: argparse.Namespace, logger: logging.Logger) -> int:
    conn, config = _open(args, logger)
    if conn is None:
        return 1
    with conn:
        try:
            sites = load_sites_file(args.path)
        except ConfigError as exc:
            log_event(logger, logging.ERROR, "sites_import_error", error=str(exc))
            return 1
        if not sites:
            log_event(logger, logging.ERROR, "sites_import_error", error="no sites found")
            return 1
        try:
            imported = import_sites(conn, sites, config.discovery.default_re_extraction_days)
        except ValueError as exc:
            log_event(logger, logging.ERROR, "sites_import_error", error=str(exc))
            return 1
    log_event(logger, logging.INFO, "sites_imported", count=len(imported))
    return 0


def _cmd_sites_list(args: argparse.Namespace, logger: logging.Logger) -> int:
    conn, _config = _open(args, logger)
    if conn is None:
        return 1
    with conn:
        sites = list_sites(conn)
    if not sites:
        log_event(
            logger,
            logging.WARNING,
            "no_sites",
            hint="Import sites with `sitescout sites import sites.yml`",
        )
        return 1
    for site in sites:
        log_event(
            logger,
            logging.INFO,
            "site",
            site_id=site.id,
            active=site.active,
            strategy=site.fetch_strategy,
            frequency_minutes=site.frequency_minutes,
            last_successful_run=site.last_successful_run,
        )
    log_event(logger, logging.INFO, "sites_listed", count=len(sites))
    return 0


def _cmd_sites_show(args: argparse.Namespace, logger: logging.Logger) -> int:
    conn, _config = _open(args, logger)
    if conn is None:
        return 1
    with conn:
        site = get_site(conn, args.site_id)
    if site is None:
        log_event(logger, logging.ERROR, "site_not_found", site_id=args.site_id)
        return 1
    _dump(logger, site_to_dict(site))
    return 0


def _cmd_sites_active(args: argparse.Namespace, logger: logging.Logger) -> int:
    conn, _config = _open(args, logger)
    if conn is None:
        return 1
    active = args.sites_command == "resume"
    with conn:
        try:
            set_site_active(conn, args.site_id, active)
        except ValueError as exc:
            log_event(logger, logging.ERROR, str(exc), site_id=args.site_id)
            return 1
    log_event(logger, logging.INFO, "site_resumed" if active else "site_paused", site_id=args.site_id)
    return 0


def _cmd_discover(args: argparse.Namespace, logger: logging.Logger) -> int:
    conn, config = _open(args, logger)
    if conn is None:
        return 1
    with conn:
        site = get_site(conn, args.site_id)
        if site is None:
            log_event(logger, logging.ERROR, "site_not_found", site_id=args.site_id)
            return 1
        fetcher = _build_fetcher(config, logger)
        try:
            result = run_site_discovery(conn, site, fetcher, config, logger, triggered_by="manual")
        finally:
            fetcher.close()
    _dump(logger, asdict(result))
    return 0 if result.success else 1


def _cmd_schedule(args: argparse.Namespace, logger: logging.Logger) -> int:
    conn, config = _open(args, logger)
    if conn is None:
        return 1
    conn.close()
    fetcher = _build_fetcher(config, logger)
    scheduler = SiteScheduler(get_state_db_path(), fetcher, config, logger)
    scheduler.start()
    try:
        while True:
            time.sleep(args.poll_seconds)
    except KeyboardInterrupt:
        log_event(logger, logging.INFO, "scheduler_interrupted")
    finally:
        scheduler.stop()
        fetcher.close()
    return 0


def _cmd_status(args: argparse.Namespace, logger: logging.Logger) -> int:
    conn, _config = _open(args, logger)
    if conn is None:
        return 1
    with conn:
        site = get_site(conn, args.site_id)
    if site is None:
        log_event(logger, logging.ERROR, "site_not_found", site_id=args.site_id)
        return 1
    now = utc_now()
    due = compute_next_due(parse_iso(site.last_successful_run), site.frequency_minutes, now)
    _dump(
        logger,
        {
            "site_id": site.id,
            "active": site.active,
            "last_run": site.last_successful_run,
            "next_due": max(due, now).isoformat() if site.active else None,
            "frequency_minutes": site.frequency_minutes,
            "successful_runs": site.successful_runs,
            "failed_runs": site.failed_runs,
        },
    )
    return 0


def _cmd_runs(args: argparse.Namespace, logger: logging.Logger) -> int:
    conn, _config = _open(args, logger)
    if conn is None:
        return 1
    with conn:
        try:
            page = paginated_runs(conn, args.site_id, limit=args.limit, skip=args.skip)
        except ValueError as exc:
            log_event(logger, logging.ERROR, str(exc), site_id=args.site_id)
            return 1
    for run in page["items"]:
        log_event(
            logger,
            logging.INFO,
            "discovery_run",
            executed_at=run["executed_at"],
            outcome=run["outcome"],
            found=run["found"],
            new=run["new"],
            duplicate=run["duplicate"],
            skipped=run["skipped"],
            total_ms=run["total_ms"],
            error_category=run["error_category"],
        )
    log_event(logger, logging.INFO, "runs_listed", total=page["total"], has_more=page["hasMore"])
    return 0


def _cmd_urls(args: argparse.Namespace, logger: logging.Logger) -> int:
    conn, _config = _open(args, logger)
    if conn is None:
        return 1
    with conn:
        try:
            page = paginated_urls(
                conn, args.site_id, status=args.status, limit=args.limit, skip=args.skip
            )
        except ValueError as exc:
            log_event(logger, logging.ERROR, str(exc), site_id=args.site_id)
            return 1
    for record in page["items"]:
        log_event(
            logger,
            logging.INFO,
            "tracked_url",
            status=record["status"],
            times_discovered=record["times_discovered"],
            url=record["url"],
        )
    log_event(logger, logging.INFO, "urls_listed", total=page["total"], **page["counts"])
    return 0


def _cmd_analyze(args: argparse.Namespace, logger: logging.Logger) -> int:
    conn, config = _open(args, logger)
    if conn is None:
        return 1
    conn.close()
    fetcher = _build_fetcher(config, logger)
    analyze = analyze_listing if args.command == "analyze-listing" else analyze_content
    try:
        result = analyze(fetcher, args.url, config, logger)
    except OnboardingError as exc:
        log_event(logger, logging.ERROR, "analysis_failed", stage=exc.stage, error=exc.message)
        _dump(logger, exc.to_dict())
        return 1
    finally:
        fetcher.close()
    _dump(logger, result)
    return 0


def _cmd_test_selectors(args: argparse.Namespace, logger: logging.Logger) -> int:
    conn, config = _open(args, logger)
    if conn is None:
        return 1
    conn.close()
    fetcher = _build_fetcher(config, logger)
    try:
        if args.command == "test-listing":
            result = try_listing_selector(fetcher, args.url, args.selector, config, logger)
        else:
            selectors = {
                "title": args.title,
                "content": args.content,
                "image": args.image,
                "date": args.date,
                "author": args.author,
                "category": args.category,
            }
            result = try_content_selectors(fetcher, args.url, selectors, config, logger)
    finally:
        fetcher.close()
    _dump(logger, result)
    return 0 if result["validation"]["valid"] else 1


def _cmd_onboard(args: argparse.Namespace, logger: logging.Logger) -> int:
    conn, config = _open(args, logger)
    if conn is None:
        return 1
    fetcher = _build_fetcher(config, logger)
    try:
        result = create_site_with_ai(
            conn,
            fetcher,
            config,
            logger,
            name=args.name,
            base_url=args.base_url,
            listing_url=args.listing_url,
            test_url=args.test_url,
            frequency_minutes=args.frequency_minutes,
            fetch_strategy=args.strategy,
            persist=args.persist,
        )
    except OnboardingError as exc:
        log_event(logger, logging.ERROR, "onboarding_failed", stage=exc.stage, error=exc.message)
        _dump(logger, exc.to_dict())
        return 1
    finally:
        fetcher.close()
        conn.close()
    _dump(logger, result)
    return 0


def _cmd_config_import(args: argparse.Namespace, logger: logging.Logger) -> int:
    path = args.path or os.environ.get("SCOUT_CONFIG_PATH")
    if not path:
        log_event(logger, logging.ERROR, "config_error", error="no config path given")
        return 1
    if args.data_dir:
        os.environ["SCOUT_DATA_DIR"] = args.data_dir
    with connect_db(get_state_db_path()) as conn:
        try:
            import_config_file(conn, path)
        except ConfigError as exc:
            log_event(logger, logging.ERROR, "config_error", error=str(exc))
            return 1
    log_event(logger, logging.INFO, "config_imported", path=path)
    return 0


def _cmd_serve(args: argparse.Namespace, logger: logging.Logger) -> int:
    import uvicorn

    if args.data_dir:
        os.environ["SCOUT_DATA_DIR"] = args.data_dir
    uvicorn.run("sitescout.admin:app", host=args.host, port=args.port)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sitescout", description="SiteScout CLI")
    parser.add_argument(
        "--data-dir",
        dest="data_dir",
        default=None,
        help="Directory holding state.sqlite3 (defaults to SCOUT_DATA_DIR or /data)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    sites_parser = subparsers.add_parser("sites", help="Manage sites")
    sites_subparsers = sites_parser.add_subparsers(dest="sites_command", required=True)

    sites_import = sites_subparsers.add_parser("import", help="Import sites from YAML")
    sites_import.add_argument("path", help="Path to sites.yml")
    sites_import.set_defaults(func=_cmd_sites_import)

    sites_list = sites_subparsers.add_parser("list", help="List sites")
    sites_list.set_defaults(func=_cmd_sites_list)

    sites_show = sites_subparsers.add_parser("show", help="Show a site")
    sites_show.add_argument("site_id", help="Site id")
    sites_show.set_defaults(func=_cmd_sites_show)

    sites_pause = sites_subparsers.add_parser("pause", help="Deactivate a site")
    sites_pause.add_argument("site_id", help="Site id")
    sites_pause.set_defaults(func=_cmd_sites_active)

    sites_resume = sites_subparsers.add_parser("resume", help="Reactivate a site")
    sites_resume.add_argument("site_id", help="Site id")
    sites_resume.set_defaults(func=_cmd_sites_active)

    discover_parser = subparsers.add_parser("discover", help="Run discovery for one site now")
    discover_parser.add_argument("site_id", help="Site id")
    discover_parser.set_defaults(func=_cmd_discover)

    schedule_parser = subparsers.add_parser(
        "schedule", help="Run the per-site scheduler until interrupted"
    )
    schedule_parser.add_argument("--poll-seconds", type=float, default=5.0)
    schedule_parser.set_defaults(func=_cmd_schedule)

    status_parser = subparsers.add_parser("status", help="Show schedule status for a site")
    status_parser.add_argument("site_id", help="Site id")
    status_parser.set_defaults(func=_cmd_status)

    runs_parser = subparsers.add_parser("runs", help="List discovery runs for a site")
    runs_parser.add_argument("site_id", help="Site id")
    runs_parser.add_argument("--limit", type=int, default=20)
    runs_parser.add_argument("--skip", type=int, default=0)
    runs_parser.set_defaults(func=_cmd_runs)

    urls_parser = subparsers.add_parser("urls", help="List tracked URLs for a site")
    urls_parser.add_argument("site_id", help="Site id")
    urls_parser.add_argument(
        "--status",
        choices=["discovered", "queued", "processing", "completed", "failed", "skipped"],
    )
    urls_parser.add_argument("--limit", type=int, default=50)
    urls_parser.add_argument("--skip", type=int, default=0)
    urls_parser.set_defaults(func=_cmd_urls)

    listing_parser = subparsers.add_parser(
        "analyze-listing", help="Infer and validate a listing selector"
    )
    listing_parser.add_argument("url", help="Listing page URL")
    listing_parser.set_defaults(func=_cmd_analyze)

    content_parser = subparsers.add_parser(
        "analyze-content", help="Infer and validate article selectors"
    )
    content_parser.add_argument("url", help="Article page URL")
    content_parser.set_defaults(func=_cmd_analyze)

    test_listing_parser = subparsers.add_parser(
        "test-listing", help="Check a hand-entered listing selector against a live page"
    )
    test_listing_parser.add_argument("url", help="Listing page URL")
    test_listing_parser.add_argument("selector", help="CSS selector for article links")
    test_listing_parser.set_defaults(func=_cmd_test_selectors)

    test_content_parser = subparsers.add_parser(
        "test-content", help="Check hand-entered article selectors against a live page"
    )
    test_content_parser.add_argument("url", help="Article page URL")
    test_content_parser.add_argument("--title", required=True)
    test_content_parser.add_argument("--content", required=True)
    test_content_parser.add_argument("--image")
    test_content_parser.add_argument("--date")
    test_content_parser.add_argument("--author")
    test_content_parser.add_argument("--category")
    test_content_parser.set_defaults(func=_cmd_test_selectors)

    onboard_parser = subparsers.add_parser("onboard", help="Create a site with AI-inferred selectors")
    onboard_parser.add_argument("--name", required=True)
    onboard_parser.add_argument("--base-url", required=True)
    onboard_parser.add_argument("--listing-url", required=True)
    onboard_parser.add_argument("--test-url")
    onboard_parser.add_argument("--frequency-minutes", type=int)
    onboard_parser.add_argument("--strategy", choices=["static", "rendered"], default="rendered")
    onboard_parser.add_argument(
        "--persist", action="store_true", help="Save the validated site"
    )
    onboard_parser.set_defaults(func=_cmd_onboard)

    config_parser = subparsers.add_parser("config", help="Runtime configuration")
    config_subparsers = config_parser.add_subparsers(dest="config_command", required=True)
    config_import = config_subparsers.add_parser(
        "import", help="Merge a YAML file into the runtime config"
    )
    config_import.add_argument("path", nargs="?", help="Defaults to SCOUT_CONFIG_PATH")
    config_import.set_defaults(func=_cmd_config_import)

    serve_parser = subparsers.add_parser("serve", help="Run the admin API")
    serve_parser.add_argument("--host", default="0.0.0.0")
    serve_parser.add_argument("--port", type=int, default=8000)
    serve_parser.set_defaults(func=_cmd_serve)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logger = _setup_logging()
    return args.func(args, logger)


if __name__ == "__main__":
    raise SystemExit(main())
