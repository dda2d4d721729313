from __future__ import annotations

from typing import Any


class DiscoveryError(Exception):
    category = "unknown"

    def __init__(self, message: str, *, http_status: int | None = None) -> None:
        super().__init__(message)
        self.http_status = http_status


class NetworkError(DiscoveryError):
    category = "network"


class FetchTimeoutError(DiscoveryError):
    category = "timeout"


class RenderError(DiscoveryError):
    category = "unknown"


class RateLimitError(DiscoveryError):
    category = "rate_limit"


class SelectorError(DiscoveryError):
    category = "selector_not_found"


class ParsingError(DiscoveryError):
    category = "parsing"


class ModelOutputError(DiscoveryError):
    category = "unknown"


class ValidationError(DiscoveryError):
    category = "selector_not_found"


class OnboardingError(Exception):
    def __init__(self, stage: str, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(f"{stage}: {message}")
        self.stage = stage
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {"stage": self.stage, "message": self.message, "details": self.details}


def categorize_error_message(message: str | None) -> str:
    text = (message or "").lower()
    if "timeout" in text or "timed out" in text:
        return "timeout"
    if "rate limit" in text or "too many requests" in text or "429" in text:
        return "rate_limit"
    if (
        "network" in text
        or "connection" in text
        or "name or service not known" in text
        or "net::err" in text
        or "dns" in text
    ):
        return "network"
    if "selector" in text or "not found" in text or "no match" in text:
        return "selector_not_found"
    if "parse" in text or "parsing" in text:
        return "parsing"
    return "unknown"


def categorize_error(exc: BaseException) -> str:
    if isinstance(exc, DiscoveryError) and exc.category != "unknown":
        return exc.category
    if isinstance(exc, TimeoutError):
        return "timeout"
    return categorize_error_message(str(exc))
