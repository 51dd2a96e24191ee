import asyncio
import json

import pytest
from bs4 import BeautifulSoup

from ammo_catalog import config, logger
from ammo_catalog.browser import SNAPSHOT_SCRIPT
from ammo_catalog.errors import NavigationTimeout
from ammo_catalog.variants import VISIBLE_TEXT_SCRIPT


def make_snapshot(html="", text=None, script_globals=None, url="https://shop.example/p/1"):
    """Raw in-page evaluation result, as the snapshot script returns it."""
    if text is None:
        soup = BeautifulSoup(html, "html.parser")
        for tag in soup(["script", "style"]):
            tag.decompose()
        text = soup.get_text("\n")
    return {"url": url, "html": html, "text": text, "globals": script_globals or {}}


def product_page(price=None, availability=None, name="Lapua Naturalis 308 Win", description=""):
    offer = {}
    if price is not None:
        offer["price"] = price
    if availability is not None:
        offer["availability"] = availability
    record = {"@type": "Product", "name": name, "description": description, "offers": offer}
    return (
        "<html><head>"
        f'<script type="application/ld+json">{json.dumps(record)}</script>'
        f"</head><body><main><h1>{name}</h1></main></body></html>"
    )


class FakePage:
    def __init__(self, url, snapshots):
        self.url = url
        self.snapshots = snapshots
        self.index = 0
        self.closed = False
        self.waits = []

    @property
    def current(self):
        return self.snapshots[min(self.index, len(self.snapshots) - 1)]


class FakeSession:
    """
    Stand-in for the browser collaborator.

    pages maps url → list of raw snapshots (each timed wait advances to the
    next one) or an exception instance raised by navigate().
    """

    def __init__(self, pages, delay=0.0):
        self.pages = pages
        self.delay = delay
        self.opened = []
        self.open_now = 0
        self.max_open = 0

    async def navigate(self, url, timeout_ms):
        target = self.pages.get(url)
        if isinstance(target, BaseException):
            raise target
        if target is None:
            raise NavigationTimeout(f"timeout after {timeout_ms}ms: {url}")
        page = FakePage(url, target)
        self.opened.append(page)
        self.open_now += 1
        self.max_open = max(self.max_open, self.open_now)
        return page

    async def evaluate(self, page, script, arg=None):
        await asyncio.sleep(self.delay)
        snap = page.current
        if isinstance(snap, BaseException):
            raise snap
        if script == SNAPSHOT_SCRIPT:
            return dict(snap)
        if script == VISIBLE_TEXT_SCRIPT:
            return snap["text"]
        raise AssertionError(f"unexpected script: {script!r}")

    async def wait_for(self, page, condition, timeout_ms):
        page.waits.append((condition, timeout_ms))
        if condition is None:
            page.index += 1

    async def close(self, page):
        page.closed = True
        self.open_now -= 1


@pytest.fixture(autouse=True)
def _isolated_logs(tmp_path, monkeypatch):
    logger.clear_logs()
    logger.set_run_mode("prod")
    monkeypatch.setattr(config, "LOG_ROOT", tmp_path / "logs")
    yield
    logger.clear_logs()


@pytest.fixture
def catalog_doc():
    url = "https://www.aawee.fi/fi/308-win-lapua-naturalis/p/N317105/"
    return {
        "calibers": ["308 Winchester", "9mm"],
        "products": {
            "308 Winchester": [
                {
                    "url": url,
                    "retailer": "Aawee",
                    "productName": "Lapua Naturalis 11.0g",
                    "productDetails": "308 Win, 11.0g",
                    "brand": "Lapua",
                    "quantity": "20",
                    "pricePerRound": "0.845€",
                    "total": "16.90€",
                    "status": "Available",
                    "nonToxic": True,
                },
                {
                    "url": url,
                    "retailer": "Aawee",
                    "productName": "Lapua Naturalis 11.0g",
                    "productDetails": "308 Win, 11.0g",
                    "brand": "Lapua",
                    "quantity": "50",
                    "pricePerRound": "0.845€",
                    "total": "42.25€",
                    "status": "Available",
                    "nonToxic": True,
                },
            ],
            "9mm": [
                {
                    "url": "https://viranomainen.fi/p140970/sellier-bellot-9mm",
                    "retailer": "Viranomainen",
                    "productName": "S&B 9mm TFMJ",
                    "productDetails": "8.0g nontox",
                    "brand": "Sellier & Bellot",
                    "quantity": "50",
                    "pricePerRound": "0.398€",
                    "total": "19.90€",
                    "status": "Out of Stock",
                },
            ],
        },
    }


@pytest.fixture
def catalog_file(tmp_path, catalog_doc):
    path = tmp_path / "products.json"
    path.write_text(json.dumps(catalog_doc, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
    return path
