from __future__ import annotations

import json
import logging
import re
import socket
import time
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Any

import jsonschema

from ..config import LLMConfig, llm_api_key
from ..errors import FetchTimeoutError, ModelOutputError, NetworkError, RateLimitError
from ..utils import elapsed_ms, log_event

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


@dataclass(frozen=True)
class LLMResponse:
    parsed: dict[str, Any]
    raw: str
    model: str
    prompt_tokens: int
    completion_tokens: int
    estimated_cost: float
    elapsed_ms: int


def call_structured(
    llm: LLMConfig,
    system: str,
    user: str,
    schema: dict[str, Any],
    schema_name: str,
    max_tokens: int,
    logger: logging.Logger,
) -> LLMResponse:
    if not llm.enabled:
        raise ModelOutputError("llm_disabled")
    api_key = llm_api_key(llm)
    started = time.monotonic()
    if llm.provider_type == "openai_compatible":
        payload = {
            "model": llm.model,
            "temperature": llm.temperature,
            "max_tokens": int(max_tokens),
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "response_format": {
                "type": "json_schema",
                "json_schema": {"name": schema_name, "strict": True, "schema": schema},
            },
        }
        response = _http_request(
            "POST",
            _join_url(llm.base_url, "/chat/completions"),
            _auth_headers(llm.provider_type, api_key),
            payload,
            llm.timeout_seconds,
        )
        raw = _read_openai(response)
        usage = response.get("usage") or {}
        prompt_tokens = int(usage.get("prompt_tokens") or 0)
        completion_tokens = int(usage.get("completion_tokens") or 0)
    elif llm.provider_type == "anthropic":
        payload = {
            "model": llm.model,
            "temperature": llm.temperature,
            "max_tokens": int(max_tokens),
            "system": system
            + "\n\nRespond with a single JSON object matching this JSON schema:\n"
            + json.dumps(schema),
            "messages": [{"role": "user", "content": user}],
        }
        response = _http_request(
            "POST",
            _join_url(llm.base_url, "/messages"),
            _auth_headers(llm.provider_type, api_key),
            payload,
            llm.timeout_seconds,
        )
        raw = _read_anthropic(response)
        usage = response.get("usage") or {}
        prompt_tokens = int(usage.get("input_tokens") or 0)
        completion_tokens = int(usage.get("output_tokens") or 0)
    else:
        raise ValueError("unsupported_provider_type")

    parsed = _parse_json(raw)
    _validate_json(schema, parsed, schema_name)
    total_tokens = prompt_tokens + completion_tokens
    cost = round(total_tokens / 1_000_000 * llm.cost_per_million_tokens, 6)
    took = elapsed_ms(started, time.monotonic())
    log_event(
        logger,
        logging.INFO,
        "llm_call_completed",
        schema=schema_name,
        model=llm.model,
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        cost=cost,
        elapsed_ms=took,
    )
    return LLMResponse(
        parsed=parsed,
        raw=raw,
        model=llm.model,
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        estimated_cost=cost,
        elapsed_ms=took,
    )


def _http_request(
    method: str,
    url: str,
    headers: dict[str, str],
    payload: dict[str, Any] | None,
    timeout: int,
) -> dict[str, Any]:
    data = json.dumps(payload).encode("utf-8") if payload is not None else None
    request = urllib.request.Request(url, data=data, method=method)
    request.add_header("Content-Type", "application/json")
    for key, value in headers.items():
        request.add_header(key, value)
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:
            raw = response.read().decode("utf-8")
    except urllib.error.HTTPError as exc:
        body = exc.read().decode("utf-8", errors="ignore")
        if exc.code == 429:
            raise RateLimitError(f"llm rate limited: {body[:200]}", http_status=429) from exc
        raise NetworkError(f"llm http_error {exc.code}: {body[:500]}", http_status=exc.code) from exc
    except (socket.timeout, TimeoutError) as exc:
        raise FetchTimeoutError(f"llm request timed out after {timeout}s") from exc
    except urllib.error.URLError as exc:
        raise NetworkError(f"llm network_error: {exc}") from exc
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ModelOutputError(f"llm returned non-JSON envelope: {raw[:200]}") from exc


def _read_openai(response: dict[str, Any]) -> str:
    choices = response.get("choices") or []
    if not choices:
        raise ModelOutputError("openai_missing_choices")
    message = choices[0].get("message") or {}
    if message.get("refusal"):
        raise ModelOutputError(f"model refused: {message['refusal']}")
    return message.get("content") or ""


def _read_anthropic(response: dict[str, Any]) -> str:
    content = response.get("content") or []
    if not content:
        raise ModelOutputError("anthropic_missing_content")
    return content[0].get("text") or ""


def _parse_json(raw: str) -> dict[str, Any]:
    text = _FENCE_RE.sub("", (raw or "").strip())
    if not text:
        raise ModelOutputError("empty model response")
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ModelOutputError(f"model response is not JSON: {text[:200]}") from exc
    if not isinstance(parsed, dict):
        raise ModelOutputError("model response is not a JSON object")
    return parsed


def _validate_json(schema: dict[str, Any], payload: Any, schema_name: str) -> None:
    try:
        jsonschema.validate(payload, schema)
    except jsonschema.ValidationError as exc:
        raise ModelOutputError(f"{schema_name} schema violation: {exc.message}") from exc


def _auth_headers(provider_type: str, api_key: str | None) -> dict[str, str]:
    if not api_key:
        return {}
    if provider_type == "openai_compatible":
        return {"Authorization": f"Bearer {api_key}"}
    if provider_type == "anthropic":
        return {"x-api-key": api_key, "anthropic-version": "2023-06-01"}
    return {}


def _join_url(base: str, path: str) -> str:
    return base.rstrip("/") + path
