from __future__ import annotations

import logging
from dataclasses import replace
from typing import Dict, List, Tuple

from campaign_layout.models.campaign import (
    AnalysisFailure,
    AssetRef,
    CampaignResult,
    CampaignSession,
    MatchResult,
    ParsedTable,
)
from campaign_layout.services.analysis import analyze_images
from campaign_layout.services.errors import NoDataError, SessionStorageError, TableFormatError
from campaign_layout.services.layouts import compose_layouts
from campaign_layout.services.matching import match_images_to_products
from campaign_layout.services.product_table import parse_product_table
from campaign_layout.services.sessions import PRODUCTS, SessionStore


logger = logging.getLogger(__name__)


def match_session_products(
    session: CampaignSession,
    store: SessionStore,
) -> Tuple[ParsedTable | None, MatchResult | None]:
    """
    Parse the session's product table and match every uploaded product image.

    Matching works on file names only, so no image is decoded; images that
    later fail analysis still count towards the match rate. Returns
    (None, None) without a table and (table, None) for a table with no
    records. Raises TableFormatError for an unusable table.
    """
    table_bytes = store.read_product_table(session)
    if table_bytes is None:
        return None, None
    table = parse_product_table(table_bytes)
    if not table.records:
        return table, None
    return table, match_images_to_products(session.products, table.records)


def annotate_matched_skus(session: CampaignSession, store: SessionStore) -> CampaignSession:
    """
    Record the matched SKU on each product image reference and persist it.

    Annotations are recomputed from scratch, so a replaced table clears stale
    SKUs. An unusable table leaves every product unannotated.
    """
    try:
        _, match = match_session_products(session, store)
    except TableFormatError as exc:
        logger.warning("Not annotating SKUs for session %s: %s", session.id, exc)
        match = None

    skus: Dict[str, str] = {}
    if match is not None:
        skus = {item.image.url: item.matched_sku for item in match.matched}
    session.products = [replace(ref, sku=skus.get(ref.url)) for ref in session.products]
    store.save_metadata(session)
    logger.info("Annotated %d of %d product image(s) with a SKU", len(skus), len(session.products))
    return session


def run_campaign_pipeline(
    session: CampaignSession,
    store: SessionStore,
    max_workers: int | None = None,
) -> CampaignResult:
    """
    Run analysis, table parsing, matching and composition for one session.

    Per-item failures (an unreadable image, a malformed table row) are
    reported alongside the successful results and never abort the run.
    Structural problems (no usable images, an unparseable table header) are
    collected in `errors` and the dependent stages are skipped.
    """
    items: List[Tuple[AssetRef, bytes]] = []
    read_failures: List[AnalysisFailure] = []
    for ref in session.products:
        try:
            items.append((ref, store.read_asset(session, PRODUCTS, ref)))
        except SessionStorageError as exc:
            logger.warning("Skipping product image %s: %s", ref.file_name, exc)
            read_failures.append(AnalysisFailure(ref=ref, error=str(exc)))

    batch = analyze_images(items, max_workers=max_workers)
    batch.failures[:0] = read_failures
    result = CampaignResult(batch=batch)

    try:
        result.table, result.match = match_session_products(session, store)
    except TableFormatError as exc:
        logger.warning("Product table for session %s rejected: %s", session.id, exc)
        result.errors.append(str(exc))

    records = result.table.records if result.table else []
    try:
        result.layouts = compose_layouts(
            batch.analyses,
            frame=session.frame,
            icons=session.icons,
            records=records or None,
        )
    except NoDataError as exc:
        result.errors.append(str(exc))

    logger.info(
        "Pipeline for session %s: %d analyzed, %d failed, match rate %s, %d layout(s)",
        session.id,
        len(batch.analyses),
        len(batch.failures),
        result.match.match_rate if result.match else "n/a",
        len(result.layouts),
    )
    return result
