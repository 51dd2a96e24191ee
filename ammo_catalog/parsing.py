# ammo_catalog/parsing.py
from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from bs4 import BeautifulSoup

from . import config
from .browser import PRICE_GLOBALS, PageSnapshot, capture_snapshot
from .catalog import parse_money
from .errors import ExtractionExhausted, MalformedStructuredData
from .logger import log

# "16,90", "299.00", "1 719,00", "1.719,00"
PRICE_PATTERN = r"(?<![\d.,])(\d+(?:[ \u00a0.]\d{3})*[.,]\d{2})(?!\d)"
PRICE_RE = re.compile(PRICE_PATTERN)
PRICE_WITH_CURRENCY_RE = re.compile(PRICE_PATTERN + r"\s*(?:€|EUR\b)")

PRODUCT_TYPES = ("product", "individualproduct")

PRICE_SELECTORS: Sequence[str] = (
    # WooCommerce
    ".woocommerce-Price-amount bdi",
    ".woocommerce-Price-amount",
    "p.price ins .woocommerce-Price-amount bdi",
    "p.price .woocommerce-Price-amount bdi",
    # Finnish storefront offer price
    ".tuotekortti_tuotehinta_tarjous",
    # Generic
    ".product-price .current-price",
    ".product-price",
    "[data-price]",
    ".price-value",
    ".current-price",
)

IN_STOCK_PHRASES: Sequence[str] = ("in stock", "available", "varastossa", "saatavilla")
OUT_OF_STOCK_PHRASES: Sequence[str] = (
    "out of stock",
    "sold out",
    "unavailable",
    "not available",
    "ei varastossa",
    "loppunut",
    "tilapäisesti loppu",
    "ilmoita, kun saatavilla",
)

IN_STOCK_CLASSES = ".in-stock, .instock, .available"
OUT_OF_STOCK_CLASSES = ".out-of-stock, .outofstock, .unavailable, .sold-out"
ADD_TO_CART_SELECTOR = (
    '[name="add-to-cart"], .add-to-cart, #add-to-cart, .ostoskorinappi, #ostoskorinappi'
)

NON_TOXIC_KEYWORDS: Sequence[str] = (
    "lyijyton",
    "lyijytön",
    "lead-free",
    "lead free",
    "non-toxic",
    "non toxic",
    "nontoxic",
    "sintox",
    "tfmj",
    "monolithic",
    "solid copper",
    "kupariluoti",
)
NON_TOXIC_RE = re.compile("|".join(re.escape(k) for k in NON_TOXIC_KEYWORDS), re.IGNORECASE)

# Longest phrase first so "ei varastossa" beats "varastossa" at the same spot
_STOCK_PHRASES: Dict[str, bool] = {p: False for p in OUT_OF_STOCK_PHRASES}
_STOCK_PHRASES.update({p: True for p in IN_STOCK_PHRASES})
_STOCK_RE = re.compile(
    r"(?<!\w)("
    + "|".join(re.escape(p) for p in sorted(_STOCK_PHRASES, key=len, reverse=True))
    + ")"
)


@dataclass
class ExtractionResult:
    price: Optional[float] = None
    available: Optional[bool] = None
    non_toxic: Optional[bool] = None
    strategy: str = "none"

    @classmethod
    def failure(cls) -> "ExtractionResult":
        return cls(strategy="error")

    @property
    def succeeded(self) -> bool:
        return self.price is not None


class ParsedPage:
    """A snapshot plus its parsed DOM, shared by every strategy."""

    def __init__(self, snapshot: PageSnapshot):
        self.snapshot = snapshot
        self.soup = BeautifulSoup(snapshot.html or "", "html.parser")
        self._json_ld: Optional[List[Dict[str, Any]]] = None

    @property
    def text(self) -> str:
        return self.snapshot.text

    @property
    def json_ld(self) -> List[Dict[str, Any]]:
        if self._json_ld is None:
            self._json_ld = list(_iter_json_ld_nodes(self.soup))
        return self._json_ld


# --------------------------------------------------------------
# Low-level helpers
# --------------------------------------------------------------

def to_price(value: Any) -> Optional[float]:
    price = parse_money(value)
    if price is None or price != price or price <= 0:
        return None
    return price


def price_in_text(text: str) -> Optional[float]:
    m = PRICE_RE.search(text or "")
    return to_price(m.group(1)) if m else None


def _load_json_ld(raw: str) -> Any:
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, TypeError) as exc:
        raise MalformedStructuredData(str(exc)) from exc


def _flatten_json_ld(data: Any) -> Iterator[Dict[str, Any]]:
    if isinstance(data, list):
        for item in data:
            yield from _flatten_json_ld(item)
    elif isinstance(data, dict):
        yield data
        graph = data.get("@graph")
        if isinstance(graph, list):
            yield from _flatten_json_ld(graph)


def _iter_json_ld_nodes(soup: BeautifulSoup) -> Iterator[Dict[str, Any]]:
    for script in soup.find_all("script", type="application/ld+json"):
        try:
            data = _load_json_ld(script.string or script.get_text() or "")
        except MalformedStructuredData as exc:
            log(f"skipping malformed JSON-LD record: {exc}", context="parsing")
            continue
        yield from _flatten_json_ld(data)


def _is_product(node: Dict[str, Any]) -> bool:
    kind = node.get("@type")
    kinds = kind if isinstance(kind, list) else [kind]
    return any(str(k).lower() in PRODUCT_TYPES for k in kinds)


def _first_offer(node: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    offers = node.get("offers")
    if isinstance(offers, list):
        offers = offers[0] if offers else None
    return offers if isinstance(offers, dict) else None


def _availability_flag(value: Any) -> Optional[bool]:
    if not value:
        return None
    v = str(value).lower()
    return any(k in v for k in ("instock", "limitedavailability", "onlineonly", "instoreonly"))


# --------------------------------------------------------------
# Price strategies: (ParsedPage) -> price | None
# --------------------------------------------------------------

def try_json_ld(page: ParsedPage) -> Optional[float]:
    for node in page.json_ld:
        if not _is_product(node):
            continue
        offer = _first_offer(node)
        if offer is None:
            continue
        raw = offer.get("lowPrice")
        if raw is None:
            raw = offer.get("price")
        price = to_price(raw)
        if price is not None:
            return price
    return None


def try_meta_tags(page: ParsedPage) -> Optional[float]:
    meta = page.soup.select_one('meta[itemprop="price"]') or page.soup.select_one(
        'meta[property="product:price:amount"]'
    )
    if meta is None:
        return None
    return to_price(meta.get("content"))


def try_dom_selectors(page: ParsedPage) -> Optional[float]:
    for selector in PRICE_SELECTORS:
        el = page.soup.select_one(selector)
        if el is None:
            continue
        price = price_in_text(el.get_text().strip())
        if price is not None:
            return price
        price = to_price(el.get("data-price"))
        if price is not None:
            return price
    return None


def try_js_variables(page: ParsedPage) -> Optional[float]:
    for name in PRICE_GLOBALS:
        value = page.snapshot.script_globals.get(name)
        if isinstance(value, bool):
            continue
        price = to_price(value)
        if price is not None:
            return price
    return None


def try_text_regex(page: ParsedPage) -> Optional[float]:
    """Last resort: first '<amount> €' in the visible text."""
    for m in PRICE_WITH_CURRENCY_RE.finditer(page.text or ""):
        price = to_price(m.group(1))
        if price is not None:
            return price
    return None


PRICE_STRATEGIES: Sequence[Tuple[str, Callable[[ParsedPage], Optional[float]]]] = (
    ("json-ld", try_json_ld),
    ("meta-tags", try_meta_tags),
    ("dom-selectors", try_dom_selectors),
    ("js-variables", try_js_variables),
)


def run_price_strategies(page: ParsedPage) -> Tuple[Optional[float], Optional[str]]:
    for name, strategy in PRICE_STRATEGIES:
        price = strategy(page)
        if price is not None:
            log(f"{name} price={price}", context="parsing")
            return price, name
    return None, None


def fallback_price(page: ParsedPage) -> float:
    price = try_text_regex(page)
    if price is None:
        raise ExtractionExhausted(f"no price found on {page.snapshot.url or 'page'}")
    log(f"text-regex price={price}", context="parsing")
    return price


# --------------------------------------------------------------
# Availability and classification
# --------------------------------------------------------------

def availability_from_text(text: str) -> Optional[bool]:
    m = _STOCK_RE.search((text or "").lower())
    return _STOCK_PHRASES[m.group(1)] if m else None


def extract_availability(page: ParsedPage) -> Optional[bool]:
    for node in page.json_ld:
        offer = _first_offer(node)
        if offer is None:
            continue
        flag = _availability_flag(offer.get("availability"))
        if flag is not None:
            return flag

    meta = page.soup.select_one('meta[itemprop="availability"]')
    if meta is not None:
        flag = _availability_flag(meta.get("content"))
        if flag is not None:
            return flag

    flag = availability_from_text(page.text)
    if flag is not None:
        return flag

    if page.soup.select_one(IN_STOCK_CLASSES) is not None:
        return True
    if page.soup.select_one(OUT_OF_STOCK_CLASSES) is not None:
        return False

    cart = page.soup.select_one(ADD_TO_CART_SELECTOR)
    if cart is not None:
        return not cart.has_attr("disabled")

    return None


def extract_non_toxic(page: ParsedPage) -> Optional[bool]:
    """True on the first keyword hit, otherwise unknown (never False)."""
    for node in page.json_ld:
        if not _is_product(node):
            continue
        haystack = f"{node.get('name') or ''} {node.get('description') or ''}"
        if NON_TOXIC_RE.search(haystack):
            return True

    meta = page.soup.select_one('meta[name="description"]')
    if meta is not None and NON_TOXIC_RE.search(meta.get("content") or ""):
        return True

    container = page.soup.select_one(".product, main, article") or page.soup.body or page.soup
    if NON_TOXIC_RE.search(container.get_text(" ")):
        return True

    return None


# --------------------------------------------------------------
# Chain
# --------------------------------------------------------------

def extract_from_snapshot(snapshot: PageSnapshot, use_fallback: bool = True) -> ExtractionResult:
    """Single pass over one snapshot, without the settling retry."""
    page = ParsedPage(snapshot)
    price, strategy = run_price_strategies(page)
    if price is None and use_fallback:
        try:
            price, strategy = fallback_price(page), "text-regex"
        except ExtractionExhausted as exc:
            log(f"extraction exhausted: {exc}", context="parsing")
    return ExtractionResult(
        price=price,
        available=extract_availability(page),
        non_toxic=extract_non_toxic(page),
        strategy=strategy or "none",
    )


async def extract_page(session: Any, page: Any, settle_ms: Optional[int] = None) -> ExtractionResult:
    """
    Run the strategy chain against a page that has already been navigated.

    Strategies run on the page as first rendered; if none yields a price the
    page gets a settling interval for client-side rendering and the same
    strategies run once more, then the free-text fallback.
    """
    snapshot = await capture_snapshot(session, page)
    result = extract_from_snapshot(snapshot, use_fallback=False)
    if result.succeeded:
        return result

    settle = config.SETTLE_MS if settle_ms is None else settle_ms
    log(f"no price on first pass, settling {settle}ms url={snapshot.url}", context="parsing")
    await session.wait_for(page, None, settle)

    snapshot = await capture_snapshot(session, page)
    return extract_from_snapshot(snapshot, use_fallback=True)
