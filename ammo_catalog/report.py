# ammo_catalog/report.py
from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd

from .correction import CorrectionOutcome
from .parsing import ExtractionResult
from .scraping import domain_of
from .variants import ReconcileOutcome, Variant

PRICE_COLUMNS = [
    "url",
    "domain",
    "price",
    "available",
    "non_toxic",
    "strategy",
    "corrected",
    "implausible",
    "bad_anchor",
    "status_changes",
    "non_toxic_changes",
]

VARIANT_COLUMNS = [
    "url",
    "domain",
    "variant_rows",
    "quantities",
    "updated",
    "added",
    "skipped",
    "error",
]


def build_price_report(
    results: Dict[str, ExtractionResult],
    outcomes: Dict[str, CorrectionOutcome],
) -> pd.DataFrame:
    rows = []
    for url, res in results.items():
        out = outcomes.get(url) or CorrectionOutcome()
        rows.append(
            {
                "url": url,
                "domain": domain_of(url),
                "price": res.price if res.price is not None else float("nan"),
                "available": res.available,
                "non_toxic": res.non_toxic,
                "strategy": res.strategy,
                "corrected": out.corrected,
                "implausible": out.implausible,
                "bad_anchor": out.bad_anchor,
                "status_changes": out.status_changes,
                "non_toxic_changes": out.non_toxic_changes,
            }
        )
    return pd.DataFrame(rows, columns=PRICE_COLUMNS)


def build_variant_report(
    results: Dict[str, Optional[List[Variant]]],
    outcomes: Dict[str, ReconcileOutcome],
) -> pd.DataFrame:
    rows = []
    for url, variants in results.items():
        out = outcomes.get(url) or ReconcileOutcome()
        rows.append(
            {
                "url": url,
                "domain": domain_of(url),
                "variant_rows": len(variants) if variants is not None else 0,
                "quantities": ",".join(str(v.quantity) for v in variants or []),
                "updated": out.updated,
                "added": len(out.added),
                "skipped": out.skipped,
                "error": variants is None,
            }
        )
    return pd.DataFrame(rows, columns=VARIANT_COLUMNS)


def print_report(df: pd.DataFrame, limit: int = 20) -> None:
    if df.empty:
        print("[report] nothing to show")
        return
    with pd.option_context("display.max_columns", None, "display.width", 220):
        print(df.head(limit))


def write_report(df: pd.DataFrame, path: Path | str) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, index=False)
    return path
