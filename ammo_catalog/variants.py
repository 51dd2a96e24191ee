# ammo_catalog/variants.py
"""
Pack-size variant discovery.

Storefronts that sell several box sizes under one URL list them as rows of
visible text:

    Valitse 20 kpl
    16,90 €
    Heti toimitukseen

    Valitse 50 kpl
    40,00 €
    Tilapäisesti loppu

Each row becomes a Variant; reconcile() merges the rows into the catalog
entries that share the URL.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence

from . import config
from .catalog import (
    STATUS_AVAILABLE,
    STATUS_OUT_OF_STOCK,
    Product,
    format_price,
    format_price_per_round,
    parse_quantity,
)
from .logger import log
from .parsing import PRICE_WITH_CURRENCY_RE, to_price

QUANTITY_LINE_RE = re.compile(
    r"^(?:valitse|select|choose)\s+(\d+)\s*(?:kpl|ptr|pcs|rounds?)$", re.IGNORECASE
)
OUT_OF_STOCK_CUE_RE = re.compile(r"tilapäisesti loppu|loppunut|out of stock|sold out", re.IGNORECASE)
IN_STOCK_CUE_RE = re.compile(r"^heti|saatavilla|in stock", re.IGNORECASE)

# Lines after the price line that may carry an availability cue
CUE_WINDOW = 3

MIN_VARIANT_ROWS = 2

VISIBLE_TEXT_SCRIPT = "() => document.body ? document.body.innerText : ''"


@dataclass
class Variant:
    quantity: int
    price: float
    price_per_round: float
    available: bool = True

    @property
    def status(self) -> str:
        return STATUS_AVAILABLE if self.available else STATUS_OUT_OF_STOCK


@dataclass
class ReconcileOutcome:
    added: List[Product] = field(default_factory=list)
    updated: int = 0
    skipped: bool = False


def extract_variants(text: str) -> List[Variant]:
    lines = [line.strip() for line in (text or "").split("\n")]
    variants: List[Variant] = []

    for i, line in enumerate(lines):
        m = QUANTITY_LINE_RE.match(line)
        if not m:
            continue
        qty = int(m.group(1))
        if qty <= 0:
            continue

        price_line = lines[i + 1] if i + 1 < len(lines) else ""
        pm = PRICE_WITH_CURRENCY_RE.search(price_line)
        if not pm:
            continue
        price = to_price(pm.group(1))
        if price is None:
            continue

        available = True
        for cue in lines[i + 2 : i + 2 + CUE_WINDOW]:
            if OUT_OF_STOCK_CUE_RE.search(cue):
                available = False
                break
            if IN_STOCK_CUE_RE.search(cue):
                break

        variants.append(
            Variant(
                quantity=qty,
                price=price,
                price_per_round=round(price / qty, 3),
                available=available,
            )
        )

    return variants


async def read_variants(session: Any, page: Any, wait_ms: Optional[int] = None) -> List[Variant]:
    """Give SPA storefronts time to render a heading, then read the rows."""
    wait = config.VARIANT_WAIT_MS if wait_ms is None else wait_ms
    await session.wait_for(page, "h1", wait)
    text = await session.evaluate(page, VISIBLE_TEXT_SCRIPT)
    return extract_variants(text if isinstance(text, str) else "")


def _find_by_quantity(entries: Sequence[Product], qty: int) -> Optional[Product]:
    for product in entries:
        if parse_quantity(product.quantity) == qty:
            return product
    return None


def reconcile(entries: Sequence[Product], variants: Sequence[Variant]) -> ReconcileOutcome:
    """
    Update entries whose quantity matches a variant row and build new
    entries for rows nobody covers yet. Nothing is ever removed.

    The caller appends outcome.added to the catalog; `entries` are mutated
    in place.
    """
    outcome = ReconcileOutcome()
    if not entries:
        outcome.skipped = True
        return outcome

    template = entries[0]
    if len(variants) < MIN_VARIANT_ROWS:
        log(
            f"{len(variants)} variant rows, skipping url={template.url}",
            context="variants",
        )
        outcome.skipped = True
        return outcome

    seen_qtys = set()
    for variant in variants:
        if variant.quantity in seen_qtys:
            continue
        seen_qtys.add(variant.quantity)

        new_ppr = format_price_per_round(variant.price_per_round)
        new_total = format_price(variant.price)
        new_status = variant.status

        product = _find_by_quantity(entries, variant.quantity)
        if product is not None:
            changes = []
            if product.price_per_round != new_ppr:
                changes.append(f"ppr {product.price_per_round}→{new_ppr}")
                product.price_per_round = new_ppr
            if product.total != new_total:
                changes.append(f"total {product.total}→{new_total}")
                product.total = new_total
            if product.status != new_status:
                changes.append(f"status {product.status}→{new_status}")
                product.status = new_status
            if changes:
                outcome.updated += 1
                log(
                    f"{product.retailer} | {product.product_name} qty {variant.quantity}: "
                    + ", ".join(changes),
                    context="variants",
                    extra={"url": product.url},
                )
            continue

        new_product = Product(
            url=template.url,
            retailer=template.retailer,
            product_name=template.product_name,
            product_details=template.product_details,
            brand=template.brand,
            quantity=str(variant.quantity),
            price_per_round=new_ppr,
            total=new_total,
            status=new_status,
            non_toxic=True if template.non_toxic is True else None,
        )
        outcome.added.append(new_product)
        log(
            f"{template.retailer} | {template.product_name} new variant {variant.quantity} "
            f"total={new_total} ppr={new_ppr}",
            context="variants",
            extra={"url": template.url},
        )

    return outcome
