"""Enqueueing of background quote refreshes on the rq refresh queue."""

from __future__ import annotations

import hashlib
from typing import Iterable

from redis import Redis
from rq import Queue, Retry
from rq.job import Job

from quotedesk.config.settings import settings
from quotedesk.jobs.quote_refresh import run_quote_refresh


def get_redis_connection() -> Redis:
    return Redis.from_url(settings.redis_url)


def get_queue(name: str | None = None) -> Queue:
    queue_name = name or settings.refresh_queue_name
    return Queue(name=queue_name, connection=get_redis_connection())


def refresh_job_id(symbols: list[str]) -> str:
    digest = hashlib.sha1(",".join(sorted(symbols)).encode()).hexdigest()[:16]
    return f"quote-refresh:{digest}"


def enqueue_quote_refresh(symbols: Iterable[str]) -> Job | None:
    """Queue a refresh for the given symbols; returns None when none are usable.

    The job id is derived from the symbol set, so the same refresh queued
    twice reuses one id. Failed runs are retried after a fixed interval.
    """
    cleaned = list(
        dict.fromkeys(
            symbol.strip().upper()
            for symbol in symbols
            if isinstance(symbol, str) and symbol.strip()
        )
    )
    if not cleaned:
        return None
    queue = get_queue()
    return queue.enqueue(
        run_quote_refresh,
        symbols=cleaned,
        job_id=refresh_job_id(cleaned),
        job_timeout=settings.refresh_job_timeout_seconds,
        retry=Retry(
            max=settings.refresh_max_retries,
            interval=settings.refresh_retry_interval_seconds,
        ),
        description=f"quote refresh: {', '.join(cleaned)}",
    )
