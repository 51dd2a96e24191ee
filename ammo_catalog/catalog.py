# ammo_catalog/catalog.py
"""
Catalog model: calibers → ordered product entries, plus the money helpers
every pass uses to read and write the formatted price strings.

On disk the catalog is one JSON document:

    {
      "calibers": ["22 LR", "308 Winchester", ...],
      "products": {
        "308 Winchester": [
          {"url": ..., "retailer": ..., "productName": ..., "productDetails": ...,
           "brand": ..., "quantity": "20", "pricePerRound": "0.845€",
           "total": "16.90€", "status": "Available", "nonToxic": true},
          ...
        ]
      }
    }
"""
from __future__ import annotations

import json
import math
import os
import re
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Any, List, Optional, Set, Tuple

from .errors import CatalogError
from .logger import log

STATUS_AVAILABLE = "Available"
STATUS_OUT_OF_STOCK = "Out of Stock"

CURRENCY = "€"

# pricePerRound is stored with 3 decimals, totals with 2
PPR_HALF_STEP = 0.0005
TOTAL_HALF_STEP = 0.005

_KNOWN_KEYS = (
    "url",
    "retailer",
    "productName",
    "productDetails",
    "brand",
    "quantity",
    "pricePerRound",
    "total",
    "status",
    "nonToxic",
)

# On-disk key → Product attribute, for every field held as text
_TEXT_FIELDS = {
    "url": "url",
    "retailer": "retailer",
    "productName": "product_name",
    "productDetails": "product_details",
    "brand": "brand",
    "quantity": "quantity",
    "pricePerRound": "price_per_round",
    "total": "total",
    "status": "status",
}


# --------------------------------------------------------------
# Money / quantity helpers
# --------------------------------------------------------------

def parse_money(text: Any) -> Optional[float]:
    """
    '16.90€' → 16.9, '1 719.00€' → 1719.0, '16,90 €' → 16.9,
    '1.719,00' → 1719.0. Returns None when no number can be read.
    """
    if isinstance(text, (int, float)) and not isinstance(text, bool):
        return float(text)
    if not isinstance(text, str):
        return None

    s = text.replace(CURRENCY, "").replace("EUR", "")
    s = re.sub(r"\s", "", s)
    if not s:
        return None

    if "," in s and "." in s:
        # Whichever separator comes last is the decimal one
        if s.rfind(",") > s.rfind("."):
            s = s.replace(".", "").replace(",", ".")
        else:
            s = s.replace(",", "")
    else:
        s = s.replace(",", ".")

    try:
        return float(s)
    except ValueError:
        return None


def format_price(price: float) -> str:
    formatted = f"{price:.2f}"
    whole, decimals = formatted.split(".")
    if int(whole) >= 1000:
        whole = f"{int(whole):,}".replace(",", " ")
    return f"{whole}.{decimals}{CURRENCY}"


def format_price_per_round(price: float) -> str:
    return f"{price:.3f}{CURRENCY}"


def parse_quantity(text: Any) -> Optional[int]:
    if isinstance(text, int) and not isinstance(text, bool):
        return text
    m = re.search(r"(\d+)", str(text or ""))
    return int(m.group(1)) if m else None


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


# --------------------------------------------------------------
# Product entry
# --------------------------------------------------------------

@dataclass
class Product:
    url: str
    retailer: str = ""
    product_name: str = ""
    product_details: str = ""
    brand: str = ""
    quantity: str = ""
    price_per_round: str = ""
    total: str = ""
    status: str = STATUS_AVAILABLE
    non_toxic: Optional[bool] = None
    extra: Dict[str, Any] = field(default_factory=dict, repr=False)
    # Non-string values read from disk, written back as-is while unchanged
    raw_values: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Product":
        extra = {k: v for k, v in raw.items() if k not in _KNOWN_KEYS}
        non_toxic = raw.get("nonToxic")
        if "nonToxic" in raw and non_toxic is None:
            # explicit null stays explicit on the way back out
            extra["nonToxic"] = None
        raw_values = {
            key: raw[key]
            for key in _TEXT_FIELDS
            if key in raw and raw[key] is not None and not isinstance(raw[key], str)
        }
        text = {
            attr: "" if raw.get(key) is None else str(raw[key])
            for key, attr in _TEXT_FIELDS.items()
        }
        return cls(
            **text,
            non_toxic=non_toxic if isinstance(non_toxic, bool) else None,
            extra=extra,
            raw_values=raw_values,
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for key, attr in _TEXT_FIELDS.items():
            value = getattr(self, attr)
            original = self.raw_values.get(key)
            out[key] = original if original is not None and str(original) == value else value
        out.update(self.extra)
        if self.non_toxic is not None:
            out["nonToxic"] = self.non_toxic
        return out

    @property
    def total_value(self) -> Optional[float]:
        return parse_money(self.total)

    @property
    def price_per_round_value(self) -> Optional[float]:
        return parse_money(self.price_per_round)

    def has_valid_prices(self) -> bool:
        total = self.total_value
        ppr = self.price_per_round_value
        return total is not None and ppr is not None and total > 0 and ppr > 0


def infer_round_count(product: Product) -> Optional[int]:
    """
    Rounds covered by an entry, from its own stored total / pricePerRound.

    The quantity text is never trusted on its own (retailers sometimes show
    box counts). It only settles the result when the stored pricePerRound is
    exactly what that round count would have produced after 3-decimal
    rounding, which keeps large boxes (e.g. 345.67€ / 0.346€ for 1000 rounds)
    stable from run to run.
    """
    if not product.has_valid_prices():
        return None

    total = product.total_value
    ppr = product.price_per_round_value
    rounds = round_half_up(total / ppr)

    hint = parse_quantity(product.quantity)
    if hint and hint > 0 and hint != rounds:
        tolerance = PPR_HALF_STEP + TOTAL_HALF_STEP / hint + 1e-9
        if abs(total / hint - ppr) <= tolerance:
            return hint

    return rounds


# --------------------------------------------------------------
# Catalog
# --------------------------------------------------------------

@dataclass
class Catalog:
    calibers: List[str] = field(default_factory=list)
    products: Dict[str, List[Product]] = field(default_factory=dict)
    # Calibers with no "products" key on disk; omitted again while still empty
    unlisted: Set[str] = field(default_factory=set, repr=False, compare=False)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Catalog":
        if not isinstance(raw, dict):
            raise CatalogError("catalog document must be a JSON object")

        calibers = raw.get("calibers")
        products = raw.get("products")
        if not isinstance(calibers, list) or not all(isinstance(c, str) for c in calibers):
            raise CatalogError("'calibers' must be a list of strings")
        if not isinstance(products, dict):
            raise CatalogError("'products' must be an object keyed by caliber")

        unknown = [c for c in products if c not in calibers]
        if unknown:
            raise CatalogError(f"products reference calibers missing from 'calibers': {unknown}")

        parsed: Dict[str, List[Product]] = {}
        for caliber in calibers:
            rows = products.get(caliber) or []
            if not isinstance(rows, list):
                raise CatalogError(f"products for {caliber!r} must be a list")
            bad = [i for i, r in enumerate(rows) if not isinstance(r, dict)]
            if bad:
                raise CatalogError(f"products for {caliber!r} have non-object rows at {bad}")
            parsed[caliber] = [Product.from_dict(r) for r in rows]

        return cls(
            calibers=list(calibers),
            products=parsed,
            unlisted={c for c in calibers if c not in products},
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "calibers": list(self.calibers),
            "products": {
                caliber: [p.to_dict() for p in self.products.get(caliber, [])]
                for caliber in self.calibers
                if self.products.get(caliber) or caliber not in self.unlisted
            },
        }

    def iter_entries(self):
        for caliber in self.calibers:
            for product in self.products.get(caliber, []):
                yield caliber, product

    def group_by_url(self) -> Dict[str, List[Tuple[str, Product]]]:
        """
        URL → [(caliber, product), ...] in catalog order. Entries without a
        URL are left out.
        """
        groups: Dict[str, List[Tuple[str, Product]]] = {}
        for caliber, product in self.iter_entries():
            if not product.url:
                continue
            groups.setdefault(product.url, []).append((caliber, product))
        return groups

    def unique_urls(self) -> List[str]:
        return list(self.group_by_url().keys())

    def add_product(self, caliber: str, product: Product) -> None:
        if caliber not in self.calibers:
            raise CatalogError(f"unknown caliber {caliber!r}")
        self.products.setdefault(caliber, []).append(product)

    def __len__(self) -> int:
        return sum(len(v) for v in self.products.values())


# --------------------------------------------------------------
# Load / store
# --------------------------------------------------------------

def load_catalog(path: Path | str) -> Catalog:
    path = Path(path)
    log(f"Loading catalog: {path}", context="catalog")
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except FileNotFoundError as e:
        raise CatalogError(f"catalog file not found: {path}") from e
    except json.JSONDecodeError as e:
        raise CatalogError(f"catalog file is not valid JSON: {path}: {e}") from e

    catalog = Catalog.from_dict(raw)
    log(
        f"Loaded {len(catalog)} entries across {len(catalog.calibers)} calibers",
        context="catalog",
    )
    return catalog


def save_catalog(catalog: Catalog, path: Path | str) -> Path:
    """
    Whole-file overwrite through a temp file in the same directory, so a
    crash mid-write never leaves a truncated catalog behind.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = json.dumps(catalog.to_dict(), indent=2, ensure_ascii=False) + "\n"

    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(payload)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise

    log(f"Catalog written → {path}", context="catalog")
    return path
