# ammo_catalog/browser.py
"""
Headless browser collaborator.

The rest of the package only relies on four coroutines:

    navigate(url, timeout_ms) -> page
    evaluate(page, script, arg=None) -> JSON-serialisable result
    wait_for(page, condition, timeout_ms)
    close(page)

PlaywrightSession provides them on top of playwright.async_api. Tests
substitute any object with the same methods.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Optional, Sequence

from playwright.async_api import (
    Browser,
    BrowserContext,
    Error as PWError,
    Page,
    TimeoutError as PWTimeout,
    async_playwright,
)

from . import config
from .errors import NavigationError, NavigationTimeout
from .logger import log

# Script globals some storefronts keep the selected variant's price in
PRICE_GLOBALS: Sequence[str] = ("valittuhinta", "productPrice")

SNAPSHOT_SCRIPT = """
(globalNames) => {
  const globals = {};
  for (const name of globalNames) {
    const value = window[name];
    if (typeof value === 'number' || typeof value === 'string') globals[name] = value;
  }
  return {
    url: location.href,
    html: document.documentElement ? document.documentElement.outerHTML : '',
    text: document.body ? document.body.innerText : '',
    globals,
  };
}
"""


@dataclass
class PageSnapshot:
    """Rendered state of one page at one moment."""

    url: str = ""
    html: str = ""
    text: str = ""
    script_globals: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_evaluation(cls, raw: Any) -> "PageSnapshot":
        if not isinstance(raw, dict):
            return cls()
        globals_ = raw.get("globals")
        return cls(
            url=str(raw.get("url") or ""),
            html=str(raw.get("html") or ""),
            text=str(raw.get("text") or ""),
            script_globals=dict(globals_) if isinstance(globals_, dict) else {},
        )


async def capture_snapshot(session: Any, page: Any) -> PageSnapshot:
    raw = await session.evaluate(page, SNAPSHOT_SCRIPT, list(PRICE_GLOBALS))
    return PageSnapshot.from_evaluation(raw)


class PlaywrightSession:
    """One Chromium context shared by every worker of a run."""

    def __init__(self, context: BrowserContext):
        self.context = context

    async def navigate(self, url: str, timeout_ms: int) -> Page:
        try:
            page = await self.context.new_page()
        except PWError as exc:
            log(f"could not open page url={url} exc={exc!r}", context="browser")
            raise NavigationError(f"{url}: {exc}") from exc

        try:
            await page.goto(url, timeout=timeout_ms, wait_until="domcontentloaded")
        except PWTimeout as exc:
            await self._discard(page, url)
            log(f"navigation timeout url={url} timeout_ms={timeout_ms}", context="browser")
            raise NavigationTimeout(f"timeout after {timeout_ms}ms: {url}") from exc
        except PWError as exc:
            await self._discard(page, url)
            log(f"navigation error url={url} exc={exc!r}", context="browser")
            raise NavigationError(f"{url}: {exc}") from exc
        return page

    async def _discard(self, page: Page, url: str) -> None:
        try:
            await page.close()
        except PWError as exc:
            log(f"page close failed url={url} exc={exc!r}", context="browser")

    async def evaluate(self, page: Page, script: str, arg: Any = None) -> Any:
        if arg is None:
            return await page.evaluate(script)
        return await page.evaluate(script, arg)

    async def wait_for(self, page: Page, condition: Optional[str], timeout_ms: int) -> None:
        """
        condition=None is a plain timed wait. A CSS selector waits for that
        element; not seeing it in time is fine, the caller reads whatever
        has rendered.
        """
        if condition is None:
            await page.wait_for_timeout(timeout_ms)
            return
        try:
            await page.wait_for_selector(condition, timeout=timeout_ms)
        except PWTimeout:
            log(f"wait_for {condition!r} timed out after {timeout_ms}ms", context="browser")

    async def close(self, page: Page) -> None:
        await page.close()


@asynccontextmanager
async def open_session(
    headless: Optional[bool] = None,
    user_agent: Optional[str] = None,
    locale: Optional[str] = None,
) -> AsyncIterator[PlaywrightSession]:
    headless = config.HEADLESS if headless is None else headless
    async with async_playwright() as p:
        browser: Browser = await p.chromium.launch(headless=headless)
        try:
            context = await browser.new_context(
                user_agent=user_agent or config.USER_AGENT,
                locale=locale or config.LOCALE,
            )
            log(f"browser launched headless={headless}", context="browser")
            yield PlaywrightSession(context)
        finally:
            await browser.close()
