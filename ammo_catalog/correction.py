# ammo_catalog/correction.py
"""
Price correction for every catalog entry that shares one URL.

A page only shows the price of whichever pack size is currently selected,
and the catalog's quantity text is sometimes a box count rather than a
round count. Stored total / pricePerRound pairs are always consistent with
each other though, so their ratio gives each entry's real round count:

  1. anchor = entry whose stored total is closest to the scraped price
  2. roundsPerBox = round(anchor.total / anchor.pricePerRound), must be >= 10
  3. newPPR = scraped / roundsPerBox
  4. every entry: total = newPPR * its own round count, pricePerRound = newPPR,
     unless newPPR moves its pricePerRound outside [1/3, 3]x
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from . import config
from .catalog import (
    STATUS_AVAILABLE,
    STATUS_OUT_OF_STOCK,
    Product,
    format_price,
    format_price_per_round,
    infer_round_count,
    round_half_up,
)
from .errors import BadAnchorData, ImplausibleCorrection
from .logger import log
from .parsing import ExtractionResult


@dataclass
class CorrectionOutcome:
    corrected: int = 0
    implausible: int = 0
    bad_anchor: bool = False
    status_changes: int = 0
    non_toxic_changes: int = 0

    @property
    def changes(self) -> int:
        return self.corrected + self.status_changes + self.non_toxic_changes


def select_anchor(entries: Sequence[Product], scraped_price: float) -> Optional[Product]:
    anchor: Optional[Product] = None
    closest = float("inf")
    for product in entries:
        if not product.has_valid_prices():
            continue
        diff = abs(product.total_value - scraped_price)
        if diff < closest:
            closest = diff
            anchor = product
    return anchor


def rounds_per_box(anchor: Product) -> int:
    """
    The anchor's round count. The plausibility gate looks at the stored
    total / pricePerRound ratio alone, the quantity text cannot rescue it.
    """
    if not anchor.has_valid_prices():
        raise BadAnchorData(anchor.url, 0)
    ratio_rounds = round_half_up(anchor.total_value / anchor.price_per_round_value)
    rounds = infer_round_count(anchor) or 0
    if min(ratio_rounds, rounds) < config.MIN_ROUNDS_PER_BOX:
        raise BadAnchorData(anchor.url, min(ratio_rounds, rounds))
    return rounds


def check_plausible(old_ppr: float, new_ppr: float) -> None:
    ratio = new_ppr / old_ppr
    if ratio > config.MAX_PPR_RATIO or ratio < 1 / config.MAX_PPR_RATIO:
        raise ImplausibleCorrection(old_ppr, new_ppr)


def _propagate_flags(entries: Sequence[Product], result: ExtractionResult, outcome: CorrectionOutcome) -> None:
    if result.available is not None:
        new_status = STATUS_AVAILABLE if result.available else STATUS_OUT_OF_STOCK
        for product in entries:
            if product.status != new_status:
                log(
                    f"{product.retailer} | {product.product_name} status: {product.status} → {new_status}",
                    context="correction",
                    extra={"url": product.url},
                )
                product.status = new_status
                outcome.status_changes += 1

    if result.non_toxic is True:
        for product in entries:
            if product.non_toxic is not True:
                log(
                    f"{product.retailer} | {product.product_name} non-toxic: detected",
                    context="correction",
                    extra={"url": product.url},
                )
                product.non_toxic = True
                outcome.non_toxic_changes += 1


def propagate(entries: Sequence[Product], result: ExtractionResult) -> CorrectionOutcome:
    """
    Apply one extraction result to every entry sharing its URL, in place.

    Availability and non-toxic flags always propagate. The price part is
    all-or-nothing per entry and skips the whole group on a bad anchor.
    """
    outcome = CorrectionOutcome()
    if not entries:
        return outcome

    _propagate_flags(entries, result, outcome)

    if result.price is None:
        return outcome
    scraped = result.price

    anchor = select_anchor(entries, scraped)
    if anchor is None:
        log(f"no entry with usable prices url={entries[0].url}", context="correction")
        return outcome

    try:
        base_rounds = rounds_per_box(anchor)
    except BadAnchorData as exc:
        log(f"SKIP bad base data: {exc}", context="correction", extra={"url": anchor.url})
        outcome.bad_anchor = True
        return outcome

    new_ppr = scraped / base_rounds
    new_ppr_str = format_price_per_round(new_ppr)

    for product in entries:
        if not product.has_valid_prices():
            continue
        old_ppr = product.price_per_round_value

        try:
            check_plausible(old_ppr, new_ppr)
        except ImplausibleCorrection as exc:
            log(
                f"SKIP {product.retailer} | {product.product_name} — {exc}",
                context="correction",
                extra={"url": product.url, "ratio": exc.ratio},
            )
            outcome.implausible += 1
            continue

        actual_rounds = infer_round_count(product)
        if not actual_rounds:
            continue

        new_total_str = format_price(new_ppr * actual_rounds)
        if new_total_str == product.total and new_ppr_str == product.price_per_round:
            continue

        log(
            f"{product.retailer} | {product.product_name} ({product.quantity}) "
            f"total: {product.total} → {new_total_str}, €/round: "
            f"{product.price_per_round} → {new_ppr_str}",
            context="correction",
            extra={"url": product.url, "rounds": actual_rounds, "scraped": scraped},
        )
        product.total = new_total_str
        product.price_per_round = new_ppr_str
        outcome.corrected += 1

    return outcome
