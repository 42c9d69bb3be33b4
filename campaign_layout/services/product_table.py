from __future__ import annotations

import csv
import io
import logging
import re
from typing import Any, Dict, List, Sequence, Tuple

from campaign_layout.models.campaign import ParsedTable, ProductRecord
from campaign_layout.services.errors import TableFormatError, TableParseWarning


logger = logging.getLogger(__name__)

# Canonical product fields and the header spellings that map onto them, in
# priority order. The first alias with a non-empty value in a row wins.
COLUMN_ALIASES: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("sku", ("sku", "product_sku", "item_sku", "code", "product_code")),
    ("brand", ("brand", "brand_name", "manufacturer")),
    ("product_name", ("product_name", "name", "title", "product_title", "item_name")),
    ("full_price", ("full_price", "original_price", "price", "msrp", "retail_price")),
    ("discounted_price", ("discounted_price", "sale_price", "promo_price", "special_price")),
    ("discount_percent", ("discount_percent", "discount", "discount_%", "off")),
    ("description", ("description", "product_description", "details")),
    ("category", ("category", "product_category", "type")),
    ("image_url", ("image_url", "image", "product_image", "photo")),
)

CANONICAL_FIELDS: Tuple[str, ...] = tuple(canonical for canonical, _ in COLUMN_ALIASES)

_WHITESPACE = re.compile(r"\s+")


def normalize_header(name: str) -> str:
    """Trim, lower-case and collapse whitespace runs to underscores."""
    return _WHITESPACE.sub("_", name.strip().lower())


def resolve_column_aliases(columns: Sequence[str]) -> List[Tuple[str, Tuple[str, ...]]]:
    """
    Resolve the alias table against one header row.

    Returns, per canonical field, the aliases actually present in `columns`
    in priority order. Fields with no matching column are omitted.
    """
    present = set(columns)
    plan: List[Tuple[str, Tuple[str, ...]]] = []
    for canonical, aliases in COLUMN_ALIASES:
        available = tuple(alias for alias in aliases if alias in present)
        if available:
            plan.append((canonical, available))
    return plan


def _decode(data: bytes) -> str:
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise TableFormatError(f"Product table is not valid UTF-8: {exc}") from exc


def _read_header(
    reader: Any,
    warnings: List[TableParseWarning],
) -> Tuple[List[Tuple[int, str]], int]:
    """
    Read the first non-empty row as the header.

    Returns (column index, normalized name) pairs for usable columns plus
    the raw header width. Blank and duplicate header cells are dropped with
    a warning.
    """
    try:
        for raw_header in reader:
            if any(cell.strip() for cell in raw_header):
                break
        else:
            raise TableFormatError("Product table has no header row")
    except csv.Error as exc:
        raise TableFormatError(f"Product table header could not be parsed: {exc}") from exc

    header: List[Tuple[int, str]] = []
    seen: set[str] = set()
    for index, cell in enumerate(raw_header):
        name = normalize_header(cell)
        if not name:
            warnings.append(
                TableParseWarning(line=reader.line_num, message=f"Column {index + 1} has no header; ignored")
            )
            continue
        if name in seen:
            warnings.append(
                TableParseWarning(line=reader.line_num, message=f"Duplicate column '{name}' ignored")
            )
            continue
        seen.add(name)
        header.append((index, name))
    return header, len(raw_header)


def parse_product_table(data: bytes) -> ParsedTable:
    """
    Parse a CSV product table into normalized records.

    The header row is mandatory; a missing header or undecodable bytes raise
    TableFormatError. Row-level problems never abort parsing: ragged rows are
    kept (missing cells read as empty, extra cells dropped) and rows that
    cannot be tokenised at all are skipped. Both are reported in `warnings`.
    """
    text = _decode(data)
    reader = csv.reader(io.StringIO(text, newline=""), strict=True)

    issues: List[TableParseWarning] = []
    header, header_width = _read_header(reader, issues)
    columns = [name for _, name in header]
    alias_plan = resolve_column_aliases(columns)

    records: List[ProductRecord] = []
    while True:
        try:
            row = next(reader)
        except StopIteration:
            break
        except csv.Error as exc:
            issues.append(TableParseWarning(line=reader.line_num, message=f"Skipped malformed row: {exc}"))
            continue

        if not any(cell.strip() for cell in row):
            continue

        if len(row) < header_width:
            issues.append(
                TableParseWarning(
                    line=reader.line_num,
                    message=f"Too few fields: expected {header_width}, got {len(row)}",
                )
            )
        elif len(row) > header_width:
            issues.append(
                TableParseWarning(
                    line=reader.line_num,
                    message=f"Too many fields: expected {header_width}, got {len(row)}; extras dropped",
                )
            )

        values: Dict[str, str] = {
            name: row[index].strip() if index < len(row) else "" for index, name in header
        }

        canonical: Dict[str, str] = {}
        for field_name, aliases in alias_plan:
            for alias in aliases:
                value = values.get(alias)
                if value:
                    canonical[field_name] = value
                    break

        records.append(ProductRecord(row_index=len(records), canonical=canonical, columns=values))

    if issues:
        logger.warning("Product table parsed with %d warning(s)", len(issues))

    return ParsedTable(records=records, columns=columns, warnings=[str(issue) for issue in issues])
