"""
Catalog model: money helpers, round-count inference, load/store.
"""

import json

import pytest

from ammo_catalog.catalog import (
    Catalog,
    Product,
    format_price,
    format_price_per_round,
    infer_round_count,
    load_catalog,
    parse_money,
    parse_quantity,
    save_catalog,
)
from ammo_catalog.errors import CatalogError


@pytest.mark.parametrize(
    "text, expected",
    [
        ("16.90€", 16.9),
        ("0.845€", 0.845),
        ("1 719.00€", 1719.0),
        ("16,90 €", 16.9),
        ("1.719,00", 1719.0),
        ("1 719,00 €", 1719.0),
        (17.9, 17.9),
        ("", None),
        ("n/a", None),
        (None, None),
    ],
)
def test_parse_money(text, expected):
    assert parse_money(text) == expected


def test_format_price_uses_space_thousands_separator():
    assert format_price(17.9) == "17.90€"
    assert format_price(1719) == "1 719.00€"
    assert format_price(12345.5) == "12 345.50€"
    assert format_price(999.999) == "1 000.00€"


def test_format_price_per_round_three_decimals():
    assert format_price_per_round(0.895) == "0.895€"
    assert format_price_per_round(0.8) == "0.800€"


def test_parse_quantity_reads_first_integer():
    assert parse_quantity("50") == 50
    assert parse_quantity("20+") == 20
    assert parse_quantity("1000 ptr") == 1000
    assert parse_quantity("") is None


def test_round_count_comes_from_total_and_ppr_not_quantity():
    # quantity shows a box count, the stored prices say 20 rounds
    product = Product(url="u", quantity="1+", total="16.90€", price_per_round="0.845€")
    assert infer_round_count(product) == 20


def test_round_count_keeps_large_box_stable_after_ppr_rounding():
    # 345.67 / 0.346 = 999.05, but 0.346 is exactly 345.67/1000 rounded
    product = Product(url="u", quantity="1000", total="345.67€", price_per_round="0.346€")
    assert infer_round_count(product) == 1000


def test_round_count_ignores_inconsistent_quantity_hint():
    product = Product(url="u", quantity="1000", total="16.90€", price_per_round="0.845€")
    assert infer_round_count(product) == 20


def test_round_count_none_for_invalid_prices():
    assert infer_round_count(Product(url="u", total="", price_per_round="0.845€")) is None
    assert infer_round_count(Product(url="u", total="0.00€", price_per_round="0.845€")) is None


def test_load_and_save_round_trip(catalog_file, catalog_doc, tmp_path):
    catalog = load_catalog(catalog_file)
    assert catalog.calibers == ["308 Winchester", "9mm"]
    assert len(catalog) == 3
    assert catalog.products["308 Winchester"][0].non_toxic is True
    assert catalog.products["9mm"][0].non_toxic is None

    out = tmp_path / "out" / "products.json"
    save_catalog(catalog, out)
    assert json.loads(out.read_text(encoding="utf-8")) == catalog_doc
    assert out.read_text(encoding="utf-8").endswith("}\n")


def test_save_leaves_no_temp_files(catalog_file, tmp_path):
    catalog = load_catalog(catalog_file)
    save_catalog(catalog, catalog_file)
    assert sorted(p.name for p in tmp_path.iterdir()) == ["products.json"]


def test_unknown_keys_and_explicit_null_survive_round_trip():
    raw = {
        "url": "u",
        "retailer": "R",
        "productName": "P",
        "productDetails": "",
        "brand": "B",
        "quantity": "20",
        "pricePerRound": "0.500€",
        "total": "10.00€",
        "status": "Available",
        "nonToxic": None,
        "note": "keep me",
    }
    assert Product.from_dict(raw).to_dict() == raw


def test_products_must_reference_known_calibers():
    with pytest.raises(CatalogError):
        Catalog.from_dict({"calibers": ["9mm"], "products": {"22 LR": []}})


def test_malformed_catalog_file_is_catalog_error(tmp_path):
    path = tmp_path / "products.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(CatalogError):
        load_catalog(path)
    with pytest.raises(CatalogError):
        load_catalog(tmp_path / "missing.json")


def test_group_by_url_keeps_catalog_order(catalog_file):
    catalog = load_catalog(catalog_file)
    groups = catalog.group_by_url()
    urls = list(groups)
    assert urls[0].startswith("https://www.aawee.fi")
    assert urls[1].startswith("https://viranomainen.fi")
    assert [p.quantity for _, p in groups[urls[0]]] == ["20", "50"]
    assert {c for c, _ in groups[urls[0]]} == {"308 Winchester"}


def test_add_product_rejects_unknown_caliber(catalog_file):
    catalog = load_catalog(catalog_file)
    with pytest.raises(CatalogError):
        catalog.add_product("12/70", Product(url="u"))


def test_non_object_product_row_is_catalog_error(tmp_path, catalog_doc):
    catalog_doc["products"]["9mm"].append("legacy-row")
    path = tmp_path / "products.json"
    path.write_text(json.dumps(catalog_doc), encoding="utf-8")
    with pytest.raises(CatalogError):
        load_catalog(path)


def test_numeric_fields_keep_their_type_until_changed():
    raw = {
        "url": "u",
        "retailer": "R",
        "productName": "P",
        "productDetails": "",
        "brand": "B",
        "quantity": 20,
        "pricePerRound": "0.500€",
        "total": 10.0,
        "status": "Available",
    }
    product = Product.from_dict(raw)
    assert product.quantity == "20"
    assert product.to_dict() == raw

    product.total = "11.00€"
    out = product.to_dict()
    assert out["total"] == "11.00€"
    assert out["quantity"] == 20


def test_caliber_without_products_key_is_not_added_on_save(tmp_path):
    doc = {"calibers": ["9mm", "22 LR"], "products": {"9mm": []}}
    catalog = Catalog.from_dict(doc)
    assert catalog.to_dict() == doc

    catalog.add_product("22 LR", Product(url="u", quantity="50"))
    assert [p["quantity"] for p in catalog.to_dict()["products"]["22 LR"]] == ["50"]
