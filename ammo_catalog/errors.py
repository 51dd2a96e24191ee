# ammo_catalog/errors.py
from __future__ import annotations


class AmmoCatalogError(RuntimeError):
    pass


class CatalogError(AmmoCatalogError):
    """Catalog file unreadable or structurally invalid. Fatal for a run."""


class NavigationError(AmmoCatalogError):
    """No page could be obtained for a URL."""


class NavigationTimeout(NavigationError):
    pass


class MalformedStructuredData(AmmoCatalogError):
    """One JSON-LD record could not be parsed."""


class ExtractionExhausted(AmmoCatalogError):
    """Every price strategy, including the free-text fallback, came up empty."""


class BadAnchorData(AmmoCatalogError):
    """Anchor entry implies fewer rounds per box than any real packaging."""

    def __init__(self, url: str, rounds_per_box: int):
        super().__init__(f"roundsPerBox={rounds_per_box} for {url}")
        self.url = url
        self.rounds_per_box = rounds_per_box


class ImplausibleCorrection(AmmoCatalogError):
    """A single entry's per-round price would move outside the allowed ratio."""

    def __init__(self, old_ppr: float, new_ppr: float):
        self.ratio = new_ppr / old_ppr
        super().__init__(
            f"PPR change too large ({old_ppr:.3f} → {new_ppr:.3f}, {self.ratio:.1f}x)"
        )
        self.old_ppr = old_ppr
        self.new_ppr = new_ppr
