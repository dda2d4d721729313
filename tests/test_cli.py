import logging

import pytest
import yaml

from sitescout import cli
from sitescout.config import get_state_db_path, load_runtime_config
from sitescout.db import connect_db
from sitescout.storage import get_site

from conftest import FakeFetcher, listing_html, site_payload

LISTING = "https://news.example.com/latest"


@pytest.fixture
def data_dir(tmp_path, monkeypatch):
    path = tmp_path / "data"
    monkeypatch.setenv("SCOUT_DATA_DIR", str(path))
    return str(path)


@pytest.fixture
def sites_file(tmp_path):
    path = tmp_path / "sites.yml"
    path.write_text(yaml.safe_dump({"sites": [site_payload()]}), encoding="utf-8")
    return str(path)


def _run(data_dir, *argv):
    return cli.main(["--data-dir", data_dir, *argv])


def test_sites_import_list_show_and_pause(data_dir, sites_file, caplog):
    with caplog.at_level(logging.INFO):
        assert _run(data_dir, "sites", "list") == 1
        assert _run(data_dir, "sites", "import", sites_file) == 0
        assert _run(data_dir, "sites", "list") == 0
        assert _run(data_dir, "sites", "show", "example-news") == 0
        assert _run(data_dir, "sites", "pause", "example-news") == 0
        assert _run(data_dir, "sites", "pause", "missing") == 1
    assert "event=site site_id=example-news" in caplog.text
    assert '"listing_url": "https://news.example.com/latest"' in caplog.text

    with connect_db(get_state_db_path()) as conn:
        assert get_site(conn, "example-news").active is False


def test_discover_runs_and_urls(data_dir, sites_file, monkeypatch, caplog):
    monkeypatch.setattr(
        cli, "_build_fetcher", lambda config, logger: FakeFetcher({LISTING: listing_html(4)})
    )
    _run(data_dir, "sites", "import", sites_file)
    with caplog.at_level(logging.INFO):
        assert _run(data_dir, "discover", "example-news") == 0
        assert _run(data_dir, "runs", "example-news") == 0
        assert _run(data_dir, "urls", "example-news", "--status", "queued") == 0
        assert _run(data_dir, "status", "example-news") == 0
    assert "event=discovery_run" in caplog.text
    assert "outcome=success" in caplog.text
    assert "event=urls_listed total=4" in caplog.text
    assert '"successful_runs": 1' in caplog.text


def test_discover_failure_exit_code(data_dir, sites_file, monkeypatch):
    monkeypatch.setattr(cli, "_build_fetcher", lambda config, logger: FakeFetcher())
    _run(data_dir, "sites", "import", sites_file)
    assert _run(data_dir, "discover", "example-news") == 1
    assert _run(data_dir, "discover", "missing") == 1


def test_config_import(data_dir, tmp_path):
    path = tmp_path / "config.yml"
    path.write_text(yaml.safe_dump({"scheduler": {"default_frequency_minutes": 15}}), encoding="utf-8")
    assert _run(data_dir, "config", "import", str(path)) == 0
    with connect_db(get_state_db_path()) as conn:
        assert load_runtime_config(conn).scheduler.default_frequency_minutes == 15

    bad = tmp_path / "bad.yml"
    bad.write_text(yaml.safe_dump({"fetch": {"timeout_seconds": "slow"}}), encoding="utf-8")
    assert _run(data_dir, "config", "import", str(bad)) == 1


def test_manual_selector_commands(data_dir, monkeypatch, caplog):
    article = "https://news.example.com/news/story-0"
    pages = {
        LISTING: listing_html(4),
        article: (
            "<html><body><h1>Ferry timetable changes</h1><div class='body'><p>The winter ferry "
            "timetable starts next week with two fewer crossings each day.</p></div></body></html>"
        ),
    }
    monkeypatch.setattr(cli, "_build_fetcher", lambda config, logger: FakeFetcher(pages))
    with caplog.at_level(logging.INFO):
        assert _run(data_dir, "test-listing", LISTING, "article a") == 0
        assert _run(data_dir, "test-listing", LISTING, "section.gone a") == 1
        assert _run(data_dir, "test-content", article, "--title", "h1", "--content", "div.body") == 0
    assert "event=manual_listing_test" in caplog.text
    assert '"count": 4' in caplog.text
    assert '"title": "Ferry timetable changes"' in caplog.text
