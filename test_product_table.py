"""Tests for product table parsing and column alias resolution."""

import pytest

from campaign_layout.services.errors import TableFormatError
from campaign_layout.services.product_table import (
    COLUMN_ALIASES,
    normalize_header,
    parse_product_table,
    resolve_column_aliases,
)


def test_headers_are_normalized():
    assert normalize_header("  Product   Name ") == "product_name"
    assert normalize_header("SKU") == "sku"
    assert normalize_header("Discount %") == "discount_%"


def test_alias_table_is_ordered_data():
    canonical = [name for name, _ in COLUMN_ALIASES]
    assert canonical[0] == "sku"
    assert dict(COLUMN_ALIASES)["sku"] == ("sku", "product_sku", "item_sku", "code", "product_code")


def test_resolve_aliases_keeps_priority_order():
    plan = dict(resolve_column_aliases(["code", "title", "sku", "unrelated"]))
    assert plan["sku"] == ("sku", "code")
    assert plan["product_name"] == ("title",)
    assert "brand" not in plan


def test_alias_columns_map_to_canonical_fields():
    table = (
        b"Product Code, Title ,Brand Name,Price,Sale Price,Discount\n"
        b"AB-1,Runner,Acme,$120,$90,25\n"
    )
    parsed = parse_product_table(table)

    assert parsed.columns == ["product_code", "title", "brand_name", "price", "sale_price", "discount"]
    assert parsed.warnings == []
    record = parsed.records[0]
    assert record.sku == "AB-1"
    assert record.canonical == {
        "sku": "AB-1",
        "product_name": "Runner",
        "brand": "Acme",
        "full_price": "$120",
        "discounted_price": "$90",
        "discount_percent": "25",
    }
    # Original columns survive alongside the canonical ones.
    assert record.columns["product_code"] == "AB-1"
    assert record.as_dict()["title"] == "Runner"
    assert record.as_dict()["product_name"] == "Runner"


def test_first_non_empty_alias_wins():
    parsed = parse_product_table(b"sku,code,name\n,ABC,Shoe\nXYZ,ABC,Boot\n")

    assert parsed.records[0].sku == "ABC"
    assert parsed.records[1].sku == "XYZ"
    assert parsed.records[0].columns["sku"] == ""


def test_values_are_trimmed_and_bom_is_ignored():
    parsed = parse_product_table("\ufeffSKU,Name\n  s-1 ,  Lamp  \n".encode("utf-8"))

    assert parsed.columns == ["sku", "name"]
    assert parsed.records[0].sku == "s-1"
    assert parsed.records[0].get("product_name") == "Lamp"


def test_quoted_fields_with_commas_and_newlines():
    parsed = parse_product_table(b'sku,description\nA1,"Soft, warm\nand cosy"\n')

    assert len(parsed.records) == 1
    assert parsed.records[0].get("description") == "Soft, warm\nand cosy"


def test_empty_lines_are_skipped_and_row_index_is_stable():
    parsed = parse_product_table(b"sku,name\n\nA1,One\n\n\nB2,Two\n")

    assert [r.sku for r in parsed.records] == ["A1", "B2"]
    assert [r.row_index for r in parsed.records] == [0, 1]
    assert parsed.warnings == []


def test_ragged_rows_are_kept_with_warnings():
    parsed = parse_product_table(b"sku,name\nA1\nB2,Bar,extra\nC3,Baz\n")

    assert [r.sku for r in parsed.records] == ["A1", "B2", "C3"]
    assert parsed.records[0].columns["name"] == ""
    assert parsed.records[1].columns == {"sku": "B2", "name": "Bar"}
    assert len(parsed.warnings) == 2
    assert parsed.warnings[0].startswith("Line 2: Too few fields")
    assert parsed.warnings[1].startswith("Line 3: Too many fields")


def test_row_with_stray_quote_is_skipped():
    parsed = parse_product_table(b'sku,name\n"A1"x,Foo\nB2,Bar\n')

    assert [r.sku for r in parsed.records] == ["B2"]
    assert len(parsed.warnings) == 1
    assert parsed.warnings[0].startswith("Line 2: Skipped malformed row")


def test_duplicate_and_blank_headers_are_ignored_with_warnings():
    parsed = parse_product_table(b"sku,,SKU,name\nA1,x,B9,One\n")

    assert parsed.columns == ["sku", "name"]
    assert parsed.records[0].sku == "A1"
    assert parsed.records[0].columns == {"sku": "A1", "name": "One"}
    assert len(parsed.warnings) == 2


def test_missing_canonical_fields_are_absent():
    parsed = parse_product_table(b"sku\nA1\n")
    record = parsed.records[0]

    assert record.get("brand") is None
    assert record.get("brand", "n/a") == "n/a"
    assert "brand" not in record.canonical


def test_header_only_table_has_no_records():
    parsed = parse_product_table(b"sku,name\n")
    assert parsed.records == []
    assert parsed.columns == ["sku", "name"]


@pytest.mark.parametrize("payload", [b"", b"\n\n  \n", b",,\n"])
def test_missing_header_is_fatal(payload):
    with pytest.raises(TableFormatError):
        parse_product_table(payload)


def test_invalid_utf8_is_fatal():
    with pytest.raises(TableFormatError):
        parse_product_table(b"sku\n\xff\xfe\n")
