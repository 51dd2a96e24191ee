# ammo_catalog/__init__.py
"""
Ammo Catalog: ammunition price aggregation across retailer websites.

Load catalog → render each listing in a headless browser → extract price,
stock and non-toxic flag → correct every pack-size entry sharing the URL →
write the catalog back.
"""

__all__ = [
    "config",
    "logger",
    "errors",
    "catalog",
    "browser",
    "parsing",
    "variants",
    "correction",
    "scraping",
    "report",
    "orchestrator",
]
