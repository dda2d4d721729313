from __future__ import annotations

from dataclasses import dataclass, field

URL_STATUSES = ("discovered", "queued", "processing", "completed", "failed", "skipped")
FETCH_STRATEGIES = ("static", "rendered")
DEFAULT_RE_EXTRACTION_DAYS = 30


@dataclass(frozen=True)
class ListingSelectors:
    article_links: str
    title: str | None = None
    image: str | None = None
    date: str | None = None
    category: str | None = None


@dataclass(frozen=True)
class ContentSelectors:
    title: str = ""
    content: str = ""
    image: str | None = None
    date: str | None = None
    author: str | None = None
    category: str | None = None
    tags: str | None = None
    excerpt: str | None = None


@dataclass(frozen=True)
class FetchSettings:
    wait_for_selector: str | None = None
    timeout_seconds: int | None = None
    custom_headers: dict[str, str] = field(default_factory=dict)
    max_urls_per_run: int | None = None


@dataclass(frozen=True)
class SiteConfig:
    id: str
    name: str
    base_url: str
    listing_url: str
    test_url: str | None
    active: bool
    listing_selectors: ListingSelectors
    content_selectors: ContentSelectors
    frequency_minutes: int
    fetch_strategy: str
    last_successful_run: str | None
    fetch_settings: FetchSettings = field(default_factory=FetchSettings)
    allow_re_extraction: bool = False
    re_extraction_days: int = DEFAULT_RE_EXTRACTION_DAYS
    successful_runs: int = 0
    failed_runs: int = 0
    total_urls_found: int = 0
    last_test: dict[str, object] | None = None


@dataclass(frozen=True)
class UrlTrackingRecord:
    id: int | None
    site_id: str
    url: str
    url_hash: str
    domain: str
    status: str
    first_discovered_at: str
    last_seen_at: str
    times_discovered: int
    title: str | None
    image_url: str | None
    allow_re_extraction: bool
    re_extraction_days: int
    next_re_extraction_at: str | None
    content_id: str | None
    generated_content_id: str | None
    published_id: str | None
    attempts: int
    last_attempt_at: str | None
    failure_reason: str | None
    queued_at: str | None
    processed_at: str | None
    processing_ms: int | None


@dataclass(frozen=True)
class DiscoveryRunLog:
    id: int | None
    site_id: str
    listing_url: str
    selector: str | None
    outcome: str
    found: int
    new: int
    duplicate: int
    skipped: int
    queued: int
    fetch_ms: int
    parse_ms: int
    total_ms: int
    fetch_method: str
    http_status: int | None
    sample_urls: list[str]
    error_category: str | None
    error_message: str | None
    triggered_by: str
    executed_at: str


@dataclass(frozen=True)
class DiscoveryResult:
    success: bool
    found: int
    new: int
    duplicate: int
    skipped: int
    queued: int
    duration_ms: int
    error: str | None = None
    error_category: str | None = None
    http_status: int | None = None


@dataclass(frozen=True)
class ScheduleStatus:
    is_scheduled: bool
    next_due: str | None
    last_run: str | None
    frequency_minutes: int


@dataclass(frozen=True)
class FetchOptions:
    wait_for_selector: str | None = None
    timeout_seconds: float = 30.0
    selector_timeout_seconds: float = 5.0
    user_agent: str | None = None
    viewport: tuple[int, int] = (375, 812)
    headers: dict[str, str] = field(default_factory=dict)
    settle_ms: int = 0


@dataclass(frozen=True)
class FetchResult:
    url: str
    html: str
    status: int | None
    elapsed_ms: int
    method: str


@dataclass(frozen=True)
class ReductionStats:
    original_size: int
    reduced_size: int
    reduction_percentage: float
    estimated_tokens: int


@dataclass(frozen=True)
class ReductionResult:
    reduced_html: str
    stats: ReductionStats


@dataclass(frozen=True)
class ListingProposal:
    selector: str
    confidence: float
    rationale: str


@dataclass(frozen=True)
class ContentProposal:
    title_selector: str
    content_selector: str
    image_selector: str
    date_selector: str
    author_selector: str
    category_selector: str
    confidence: float
    rationale: str

    def to_selectors(self) -> ContentSelectors:
        return ContentSelectors(
            title=self.title_selector,
            content=self.content_selector,
            image=self.image_selector or None,
            date=self.date_selector or None,
            author=self.author_selector or None,
            category=self.category_selector or None,
        )


@dataclass(frozen=True)
class ListingValidation:
    valid: bool
    urls: list[str]
    count: int
    message: str
    specificity_score: int | None = None


@dataclass(frozen=True)
class ContentValidation:
    valid: bool
    extracted_data: dict[str, str]
    message: str
