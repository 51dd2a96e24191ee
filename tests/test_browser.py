"""
Playwright session error conversion, against stand-in page/context objects.
"""

import asyncio

import pytest
from playwright.async_api import Error as PWError, TimeoutError as PWTimeout

from ammo_catalog.browser import PlaywrightSession
from ammo_catalog.errors import NavigationError, NavigationTimeout


class StubPage:
    def __init__(self, goto_exc=None, close_exc=None):
        self.goto_exc = goto_exc
        self.close_exc = close_exc
        self.close_calls = 0

    async def goto(self, url, timeout=None, wait_until=None):
        if self.goto_exc is not None:
            raise self.goto_exc

    async def close(self):
        self.close_calls += 1
        if self.close_exc is not None:
            raise self.close_exc


class StubContext:
    def __init__(self, page=None, new_page_exc=None):
        self.page = page
        self.new_page_exc = new_page_exc

    async def new_page(self):
        if self.new_page_exc is not None:
            raise self.new_page_exc
        return self.page


def navigate(context, url="https://shop.example/p/1"):
    return asyncio.run(PlaywrightSession(context).navigate(url, 15000))


def test_new_page_failure_becomes_navigation_error():
    context = StubContext(new_page_exc=PWError("Target page, context or browser has been closed"))
    with pytest.raises(NavigationError):
        navigate(context)


def test_timeout_survives_failing_close():
    page = StubPage(goto_exc=PWTimeout("Timeout 15000ms exceeded"), close_exc=PWError("closed"))
    with pytest.raises(NavigationTimeout):
        navigate(StubContext(page=page))
    assert page.close_calls == 1


def test_goto_error_closes_page():
    page = StubPage(goto_exc=PWError("net::ERR_NAME_NOT_RESOLVED"))
    with pytest.raises(NavigationError) as info:
        navigate(StubContext(page=page))
    assert not isinstance(info.value, NavigationTimeout)
    assert page.close_calls == 1


def test_successful_navigation_returns_open_page():
    page = StubPage()
    assert navigate(StubContext(page=page)) is page
    assert page.close_calls == 0
