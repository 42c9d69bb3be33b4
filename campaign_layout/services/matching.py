from __future__ import annotations

import logging
import os
from typing import Dict, Iterable, List, NamedTuple, Sequence, Tuple

from campaign_layout.models.campaign import AssetRef, MatchedImage, MatchResult, ProductRecord
from campaign_layout.services.errors import NoDataError


logger = logging.getLogger(__name__)

MATCH_EXACT = "exact"
MATCH_CONTAINS = "contains"
MATCH_REVERSE_CONTAINS = "reverse_contains"


class SkuHit(NamedTuple):
    record: ProductRecord
    sku: str
    strategy: str


def image_base_name(file_name: str) -> str:
    """File name without directory or extension, lower-cased."""
    stem, _ = os.path.splitext(os.path.basename(file_name))
    return stem.lower()


class SkuIndex:
    """
    Case-insensitive SKU lookup in table declaration order.

    The first record carrying a given SKU wins; later records with the same
    SKU are shadowed. Substring strategies always scan in declaration order so
    overlapping SKUs resolve the same way on every run.
    """

    def __init__(self, records: Iterable[ProductRecord]) -> None:
        self._entries: List[Tuple[str, ProductRecord]] = []
        self._by_sku: Dict[str, ProductRecord] = {}
        for record in records:
            sku = record.sku
            if not sku:
                continue
            key = sku.lower()
            if key in self._by_sku:
                logger.warning(
                    "Duplicate SKU %r on row %d shadowed by row %d",
                    sku,
                    record.row_index,
                    self._by_sku[key].row_index,
                )
                continue
            self._by_sku[key] = record
            self._entries.append((key, record))

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, sku: object) -> bool:
        return isinstance(sku, str) and sku.lower() in self._by_sku

    @property
    def skus(self) -> List[str]:
        return [key for key, _ in self._entries]

    def resolve(self, file_name: str) -> SkuHit | None:
        """
        Find the record for an image file name.

        Strategies are tried in strict order and the first hit wins:
        exact base name, a SKU contained in the base name, then the base name
        contained in a SKU.
        """
        base_name = image_base_name(file_name)

        record = self._by_sku.get(base_name)
        if record is not None:
            return SkuHit(record, base_name, MATCH_EXACT)

        for key, record in self._entries:
            if key in base_name:
                return SkuHit(record, key, MATCH_CONTAINS)

        if base_name:
            for key, record in self._entries:
                if base_name in key:
                    return SkuHit(record, key, MATCH_REVERSE_CONTAINS)

        return None


def calculate_match_rate(matched: int, total_images: int) -> float:
    """Percentage of matched images to one decimal; 0 when there are no images."""
    if total_images <= 0:
        return 0
    return round(matched / total_images * 100, 1)


def match_images_to_products(
    images: Sequence[AssetRef],
    records: Sequence[ProductRecord],
) -> MatchResult:
    """
    Match uploaded images to product records by SKU.

    Every image either lands in `matched` or `unmatched_images`. Records whose
    SKU was never the target of a match are reported as unmatched products,
    in table order. Raises NoDataError when there are no records at all.
    """
    if not records:
        raise NoDataError("Cannot match images without product records.")

    index = SkuIndex(records)
    result = MatchResult()
    matched_keys: set[str] = set()

    for image in images:
        hit = index.resolve(image.file_name)
        if hit is None:
            result.unmatched_images.append(image)
            continue
        matched_keys.add(hit.sku)
        result.matched.append(
            MatchedImage(
                image=image,
                record=hit.record,
                matched_sku=hit.record.sku or hit.sku,
                strategy=hit.strategy,
            )
        )

    for record in records:
        sku = record.sku
        if sku and sku.lower() not in matched_keys:
            result.unmatched_products.append(record)

    result.match_rate = calculate_match_rate(len(result.matched), len(images))
    logger.info(
        "Matched %d of %d image(s) to %d SKU(s) (%.1f%%)",
        len(result.matched),
        len(images),
        len(index),
        result.match_rate,
    )
    return result
