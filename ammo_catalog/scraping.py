# ammo_catalog/scraping.py
from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional
from urllib.parse import urlparse

from . import config
from .errors import NavigationError
from .logger import log

PageHandler = Callable[[Any, Any], Awaitable[Any]]
FailureHandler = Callable[[str, BaseException], Any]
ProgressHandler = Callable[[int, int, str, Any], None]


def domain_of(url: str) -> str:
    host = urlparse(url).netloc.lower()
    return host[4:] if host.startswith("www.") else host


async def _process_one(
    session: Any,
    url: str,
    handler: PageHandler,
    timeout_ms: int,
    on_failure: FailureHandler,
) -> Any:
    """
    Navigate, run the handler, always close the page.

    Navigation failures and handler errors both end up in on_failure; no
    retries here, the URL simply counts as failed for this run.
    """
    start = time.perf_counter()
    try:
        page = await session.navigate(url, timeout_ms)
    except NavigationError as exc:
        log(f"navigation failed url={url} exc={exc!r}", context="scraping")
        return on_failure(url, exc)
    except Exception as exc:
        log(
            f"navigation crashed url={url} exc={type(exc).__name__}: {exc}",
            context="scraping",
        )
        return on_failure(url, exc)

    try:
        result = await handler(session, page)
    except Exception as exc:
        log(
            f"page handler failed url={url} exc={type(exc).__name__}: {exc}",
            context="scraping",
        )
        return on_failure(url, exc)
    finally:
        try:
            await session.close(page)
        except Exception as exc:
            log(f"page close failed url={url} exc={exc!r}", context="scraping")

    elapsed_ms = (time.perf_counter() - start) * 1000.0
    log(f"processed url={url} in {elapsed_ms:.0f}ms", context="scraping")
    return result


async def fetch_many(
    session: Any,
    urls: Iterable[str],
    handler: PageHandler,
    on_failure: FailureHandler,
    concurrency: Optional[int] = None,
    timeout_ms: Optional[int] = None,
    on_progress: Optional[ProgressHandler] = None,
) -> Dict[str, Any]:
    """
    Run `handler(session, page)` for every URL with at most `concurrency`
    pages open at once.

    Returns {url: handler result or on_failure(url, exc)} covering every
    URL, in input order, once all workers have finished.
    """
    url_list = list(dict.fromkeys(urls))
    concurrency = config.MAX_CONCURRENCY if concurrency is None else concurrency
    timeout_ms = config.NAVIGATION_TIMEOUT_MS if timeout_ms is None else timeout_ms

    results: Dict[str, Any] = {}
    semaphore = asyncio.Semaphore(max(1, concurrency))
    completed = 0

    async def worker(u: str) -> None:
        nonlocal completed
        async with semaphore:
            outcome = await _process_one(session, u, handler, timeout_ms, on_failure)
        results[u] = outcome
        completed += 1
        if on_progress is not None:
            on_progress(completed, len(url_list), u, outcome)

    log(
        f"Fetching {len(url_list)} URLs (concurrency={concurrency}, timeout_ms={timeout_ms})",
        context="scraping",
    )
    tasks = [asyncio.create_task(worker(u)) for u in url_list]
    await asyncio.gather(*tasks)

    return {u: results[u] for u in url_list}
