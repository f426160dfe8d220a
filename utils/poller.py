"""
Readiness polling — bounded retries against a boolean probe.

Two modes are supported and chosen per call site:
  - poll_until_ready: up to N attempts with a fixed or backoff interval
  - check_after_delay: sleep once, then a single check
"""

from __future__ import annotations

import logging
import time
from typing import Callable

import httpx

from models.schemas import ReadinessOutcome

log = logging.getLogger(__name__)

Probe = Callable[[], bool]


def _evaluate(probe: Probe) -> bool:
    try:
        return bool(probe())
    except Exception as e:
        log.debug("Probe raised %s: %s", type(e).__name__, e)
        return False


def poll_until_ready(
    probe: Probe,
    max_attempts: int,
    interval: float,
    *,
    backoff: float = 1.0,
    max_interval: float | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> ReadinessOutcome:
    """Call ``probe`` up to ``max_attempts`` times, returning READY on first success.

    Sleeps ``interval`` between attempts (never after the last one). With
    ``backoff > 1`` the interval grows geometrically, capped at ``max_interval``.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    delay = interval
    for attempt in range(1, max_attempts + 1):
        if _evaluate(probe):
            log.info("Ready after %d/%d attempts", attempt, max_attempts)
            return ReadinessOutcome.READY
        log.info("Not ready (attempt %d/%d)", attempt, max_attempts)
        if attempt < max_attempts:
            sleep(delay)
            delay = delay * backoff
            if max_interval is not None:
                delay = min(delay, max_interval)

    log.warning("Readiness timed out after %d attempts", max_attempts)
    return ReadinessOutcome.TIMED_OUT


def check_after_delay(
    probe: Probe,
    delay: float,
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> ReadinessOutcome:
    """Single-shot mode: wait ``delay`` seconds, then check once."""
    log.info("Waiting %.0fs before readiness check", delay)
    sleep(delay)
    if _evaluate(probe):
        return ReadinessOutcome.READY
    return ReadinessOutcome.TIMED_OUT


def first_ok(primary: Probe, *fallbacks: Probe) -> Probe:
    """Combine probes: the primary is tried first, then each fallback in order."""

    def probe() -> bool:
        for candidate in (primary, *fallbacks):
            if _evaluate(candidate):
                return True
        return False

    return probe


def http_probe(url: str, *, timeout: float = 5.0, client: httpx.Client | None = None) -> Probe:
    """Probe that is ready when ``GET url`` answers with a status below 400."""

    def probe() -> bool:
        try:
            if client is not None:
                resp = client.get(url, timeout=timeout)
            else:
                resp = httpx.get(url, timeout=timeout, follow_redirects=True)
        except httpx.HTTPError as e:
            log.debug("GET %s failed: %s", url, e)
            return False
        log.debug("GET %s -> %d", url, resp.status_code)
        return resp.status_code < 400

    return probe


def endpoint_probe(
    base_url: str,
    primary_path: str,
    fallback_path: str | None = "/",
    *,
    timeout: float = 5.0,
    client: httpx.Client | None = None,
) -> Probe:
    """Health path first, falling back to a secondary path (usually the root)."""
    base = base_url.rstrip("/")
    primary = http_probe(f"{base}{primary_path}", timeout=timeout, client=client)
    if not fallback_path or fallback_path == primary_path:
        return primary
    return first_ok(primary, http_probe(f"{base}{fallback_path}", timeout=timeout, client=client))
