# ammo_catalog/orchestrator.py
from __future__ import annotations

import argparse
import asyncio
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

from . import config
from .browser import open_session
from .catalog import Catalog, load_catalog, save_catalog
from .correction import CorrectionOutcome, propagate
from .logger import count_by_context, export_logs_as_jsonl, log, set_run_mode
from .parsing import ExtractionResult, extract_page
from .report import (
    build_price_report,
    build_variant_report,
    print_report,
    write_report,
)
from .scraping import domain_of, fetch_many
from .variants import ReconcileOutcome, Variant, read_variants, reconcile


# -------------------------------------------------------------------
# Shared plumbing
# -------------------------------------------------------------------


@asynccontextmanager
async def _session_scope(session: Any = None, headless: Optional[bool] = None) -> AsyncIterator[Any]:
    """Use the caller's session if given, otherwise own a browser for the run."""
    if session is not None:
        yield session
        return
    async with open_session(headless=headless) as owned:
        yield owned


def _select_urls(
    catalog: Catalog,
    only: Optional[Sequence[str]] = None,
    limit: Optional[int] = None,
) -> List[str]:
    urls = catalog.unique_urls()
    if only:
        wanted = set(only)
        missing = [u for u in only if u not in urls]
        for u in missing:
            print(f"[orchestrator] URL not in catalog, ignoring: {u}")
        urls = [u for u in urls if u in wanted]
    if limit is not None:
        urls = urls[:limit]
    return urls


def _finish(
    catalog: Catalog,
    catalog_path: Path,
    changes: int,
    dry_run: bool,
) -> bool:
    if dry_run:
        print("(DRY RUN — no changes written)")
        return False
    if changes <= 0:
        print("No changes needed")
        return False
    save_catalog(catalog, catalog_path)
    print(f"Written to {catalog_path}")
    return True


# -------------------------------------------------------------------
# PASS 1: price refresh
# -------------------------------------------------------------------


def _print_price_progress(done: int, total: int, url: str, result: ExtractionResult) -> None:
    domain = domain_of(url)
    if result.strategy == "error":
        print(f"[{done}/{total}] {domain} → ERROR")
    elif result.price is None:
        print(f"[{done}/{total}] {domain} → FAILED")
    else:
        avail = {True: "In Stock", False: "Out of Stock"}.get(result.available, "?")
        nt = " [NT]" if result.non_toxic else ""
        print(f"[{done}/{total}] {domain} → {result.price:.2f}€ [{avail}]{nt} ({result.strategy})")


def apply_price_results(
    catalog: Catalog,
    results: Dict[str, ExtractionResult],
) -> Dict[str, CorrectionOutcome]:
    """
    Single mutation pass, in catalog order, after every URL has a result.
    """
    outcomes: Dict[str, CorrectionOutcome] = {}
    for url, members in catalog.group_by_url().items():
        result = results.get(url)
        if result is None:
            continue
        outcomes[url] = propagate([product for _, product in members], result)
    return outcomes


async def run_price_refresh(
    catalog_path: Path | str | None = None,
    dry_run: bool = False,
    concurrency: Optional[int] = None,
    limit: Optional[int] = None,
    only_urls: Optional[Sequence[str]] = None,
    report_path: Path | str | None = None,
    headless: Optional[bool] = None,
    session: Any = None,
) -> Dict[str, Any]:
    """
    Re-scrape every catalog URL and propagate the scraped price, availability
    and non-toxic flag to all entries sharing that URL.
    """
    catalog_path = Path(catalog_path or config.DEFAULT_CATALOG_PATH)
    catalog = load_catalog(catalog_path)
    urls = _select_urls(catalog, only_urls, limit)

    print(f"[orchestrator] Found {len(urls)} unique URLs across {len(catalog.calibers)} calibers")
    if dry_run:
        print("(DRY RUN — no files will be written)")

    async with _session_scope(session, headless) as active:
        results: Dict[str, ExtractionResult] = await fetch_many(
            active,
            urls,
            handler=extract_page,
            on_failure=lambda url, exc: ExtractionResult.failure(),
            concurrency=concurrency,
            on_progress=_print_price_progress,
        )

    succeeded = sum(1 for r in results.values() if r.succeeded)
    failed = len(results) - succeeded
    print(f"\n--- Results: {succeeded} succeeded, {failed} failed ---\n")

    outcomes = apply_price_results(catalog, results)

    corrected = sum(o.corrected for o in outcomes.values())
    implausible = sum(o.implausible for o in outcomes.values())
    bad_anchor = sum(1 for o in outcomes.values() if o.bad_anchor)
    changes = sum(o.changes for o in outcomes.values())

    print(f"{changes} field updates ({corrected} price corrections)")
    print(f"{implausible} entries skipped as implausible, {bad_anchor} URLs skipped for bad base data")

    written = _finish(catalog, catalog_path, changes, dry_run)

    df = build_price_report(results, outcomes)
    print_report(df)
    if report_path:
        write_report(df, report_path)
        print(f"Report written to {report_path}")

    summary = {
        "urls": len(urls),
        "succeeded": succeeded,
        "failed": failed,
        "updated": changes,
        "corrected": corrected,
        "skipped": implausible + bad_anchor,
        "written": written,
    }
    log("price refresh complete", context="orchestrator", extra=summary)
    return summary


# -------------------------------------------------------------------
# PASS 2: variant discovery
# -------------------------------------------------------------------


def _print_variant_progress(done: int, total: int, url: str, variants: Optional[List[Variant]]) -> None:
    domain = domain_of(url)
    if variants is None:
        print(f"[{done}/{total}] {domain} — ERROR")
    elif len(variants) < 2:
        label = "1 variant (single)" if variants else "no variants"
        print(f"[{done}/{total}] {domain} — {label}")
    else:
        qtys = ", ".join(f"{v.quantity}kpl" for v in variants)
        print(f"[{done}/{total}] {domain} — {len(variants)} variants: {qtys}")


def apply_variant_results(
    catalog: Catalog,
    results: Dict[str, Optional[List[Variant]]],
) -> Dict[str, ReconcileOutcome]:
    outcomes: Dict[str, ReconcileOutcome] = {}
    for url, members in catalog.group_by_url().items():
        if url not in results or results[url] is None:
            continue
        caliber = members[0][0]
        outcome = reconcile([product for _, product in members], results[url])
        for product in outcome.added:
            catalog.add_product(caliber, product)
        outcomes[url] = outcome
    return outcomes


async def run_variant_discovery(
    catalog_path: Path | str | None = None,
    dry_run: bool = False,
    concurrency: Optional[int] = None,
    limit: Optional[int] = None,
    only_urls: Optional[Sequence[str]] = None,
    report_path: Path | str | None = None,
    headless: Optional[bool] = None,
    session: Any = None,
) -> Dict[str, Any]:
    """
    Read every pack-size row each catalog page offers; update matching
    entries and append entries for sizes the catalog does not have yet.
    """
    catalog_path = Path(catalog_path or config.DEFAULT_CATALOG_PATH)
    catalog = load_catalog(catalog_path)
    urls = _select_urls(catalog, only_urls, limit)

    print(f"[orchestrator] Checking {len(urls)} unique URLs for variant quantities...")

    async with _session_scope(session, headless) as active:
        results: Dict[str, Optional[List[Variant]]] = await fetch_many(
            active,
            urls,
            handler=read_variants,
            on_failure=lambda url, exc: None,
            concurrency=concurrency,
            on_progress=_print_variant_progress,
        )

    outcomes = apply_variant_results(catalog, results)

    failed = sum(1 for v in results.values() if v is None)
    skipped = sum(1 for o in outcomes.values() if o.skipped)
    added = sum(len(o.added) for o in outcomes.values())
    updated = sum(o.updated for o in outcomes.values())

    print("\n--- Summary ---")
    print(f"{added} new variant entries added")
    print(f"{updated} existing entries updated")
    print(f"{skipped} URLs without variant structure, {failed} failed")

    written = _finish(catalog, catalog_path, added + updated, dry_run)

    df = build_variant_report(results, outcomes)
    print_report(df)
    if report_path:
        write_report(df, report_path)
        print(f"Report written to {report_path}")

    summary = {
        "urls": len(urls),
        "succeeded": len(results) - failed,
        "failed": failed,
        "skipped": skipped,
        "added": added,
        "updated": updated,
        "written": written,
    }
    log("variant discovery complete", context="orchestrator", extra=summary)
    return summary


# -------------------------------------------------------------------
# CLI plumbing
# -------------------------------------------------------------------


PASSES = {
    "prices": run_price_refresh,
    "variants": run_variant_discovery,
}


def build_cli_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="ammo-catalog",
        description=(
            "Ammunition price catalog maintenance.\n"
            "prices:   re-scrape every listing and correct prices/availability.\n"
            "variants: discover pack-size variants on listing pages."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    p.add_argument("command", choices=sorted(PASSES), help="Which pass to run.")
    p.add_argument(
        "--catalog",
        type=str,
        default=None,
        help="Path to the catalog JSON (default: data/products.json).",
    )
    p.add_argument(
        "--dry-run",
        action="store_true",
        help="Compute and log changes without writing the catalog.",
    )
    p.add_argument(
        "--concurrency",
        type=int,
        default=None,
        help="Max concurrent browser pages.",
    )
    p.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Only process the first N unique URLs.",
    )
    p.add_argument(
        "--url",
        dest="urls",
        action="append",
        default=None,
        help="Restrict the run to this catalog URL (repeatable).",
    )
    p.add_argument(
        "--settings",
        type=str,
        default=None,
        help="JSON file with config overrides (default: settings.json if present).",
    )
    p.add_argument(
        "--report",
        type=str,
        default=None,
        help="Write the per-URL report as CSV to this path.",
    )
    p.add_argument(
        "--headful",
        action="store_true",
        help="Show the browser window.",
    )
    return p


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_cli_parser()
    args = parser.parse_args(argv)

    try:
        config.load_settings(args.settings)
        run_id = set_run_mode("dry-run" if args.dry_run else "prod")

        run_pass = PASSES[args.command]
        summary = asyncio.run(
            run_pass(
                catalog_path=args.catalog,
                dry_run=args.dry_run,
                concurrency=args.concurrency,
                limit=args.limit,
                only_urls=args.urls,
                report_path=args.report,
                headless=False if args.headful else None,
            )
        )

        log_path = export_logs_as_jsonl()
        print(f"Run log: {log_path} (run {run_id})")
    except Exception as exc:
        log(f"fatal: {exc!r}", context="orchestrator")
        print(f"Fatal error: {exc}", file=sys.stderr)
        return 1

    print("\n=== Run summary ===")
    for k, v in summary.items():
        print(f"{k}: {v}")
    events = ", ".join(f"{ctx}={n}" for ctx, n in sorted(count_by_context().items()))
    print(f"log events: {events}")
    return 0


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
