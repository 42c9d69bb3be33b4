from __future__ import annotations

from fastapi import APIRouter, Depends, File, Form, HTTPException, Response, UploadFile, status

from campaign_layout.api.v1.schemas import (
    AnalysisFailureOut,
    AnalysisResponse,
    AssetRefOut,
    FileCounts,
    ImageAnalysisOut,
    LayoutOut,
    LayoutsResponse,
    MatchResponse,
    MatchResultOut,
    SessionCreateResponse,
    SessionStatus,
    UploadResponse,
)
from campaign_layout.config import Settings, get_settings
from campaign_layout.models.campaign import CampaignSession
from campaign_layout.services.errors import (
    InvalidUploadError,
    SessionStorageError,
    TableFormatError,
    UploadTooLargeError,
)
from campaign_layout.services.pipeline import (
    annotate_matched_skus,
    match_session_products,
    run_campaign_pipeline,
)
from campaign_layout.services.sessions import SessionStore, SessionUploads, get_session_store

router = APIRouter(prefix="/api/v1")


def _require_session(store: SessionStore, session_id: str) -> CampaignSession:
    try:
        session = store.get_session(session_id)
    except SessionStorageError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load session metadata.",
        ) from exc
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Session not found.",
        )
    return session


@router.get("/health", tags=["health"])
async def health_check() -> dict:
    """API v1 health check endpoint."""
    return {"status": "ok", "api_version": "v1"}


@router.post(
    "/sessions",
    response_model=SessionCreateResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["sessions"],
    summary="Create a new campaign session",
)
def create_session(store: SessionStore = Depends(get_session_store)) -> SessionCreateResponse:
    try:
        session = store.create_session()
    except SessionStorageError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create session storage.",
        ) from exc
    return SessionCreateResponse(session_id=session.id)


@router.post(
    "/sessions/{session_id}/uploads",
    response_model=UploadResponse,
    tags=["sessions"],
    summary="Upload product images, icons, fonts, a frame and a product table",
)
async def upload_files(
    session_id: str,
    campaign_name: str = Form(default="", description="Campaign name (required)."),
    platform: str | None = Form(default=None, description="Target platform, e.g. 'instagram'."),
    product_images: list[UploadFile] | None = File(default=None, description="Product photos."),
    icons: list[UploadFile] | None = File(default=None, description="Optional icons."),
    frame: UploadFile | None = File(default=None, description="Optional frame overlay."),
    product_table: UploadFile | None = File(default=None, description="Optional product CSV."),
    fonts: list[UploadFile] | None = File(
        default=None,
        description="Optional font files (.ttf, .otf, .woff, .woff2).",
    ),
    store: SessionStore = Depends(get_session_store),
) -> UploadResponse:
    """
    Store campaign assets for a session.

    Product image file names are kept so they can be matched to the `sku`
    column of the product table; once a table is present, matched product
    images are annotated with their SKU. At least one file must be sent.
    """
    if not campaign_name.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Campaign name is required.",
        )
    uploads = SessionUploads(
        product_images=product_images or [],
        icons=icons or [],
        frame=frame,
        product_table=product_table,
        fonts=fonts or [],
    )
    if not (
        uploads.product_images or uploads.icons or uploads.fonts or uploads.frame or uploads.product_table
    ):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="At least one file must be uploaded.",
        )

    session = _require_session(store, session_id)
    try:
        session = await store.save_uploads(session, campaign_name.strip(), platform, uploads)
        if session.product_table_path is not None:
            session = annotate_matched_skus(session, store)
    except UploadTooLargeError as exc:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=str(exc),
        ) from exc
    except InvalidUploadError as exc:
        raise HTTPException(
            status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
            detail=str(exc),
        ) from exc
    except SessionStorageError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to persist uploaded files.",
        ) from exc

    return UploadResponse(
        session_id=session.id,
        campaign_name=session.campaign_name,
        platform=session.platform,
        products=[AssetRefOut.model_validate(ref) for ref in session.products],
        icons=[AssetRefOut.model_validate(ref) for ref in session.icons],
        fonts=[AssetRefOut.model_validate(ref) for ref in session.fonts],
        frame=AssetRefOut.model_validate(session.frame) if session.frame else None,
        has_product_table=session.product_table_path is not None,
    )


@router.get(
    "/sessions/{session_id}",
    response_model=SessionStatus,
    tags=["sessions"],
    summary="Get session status",
)
def get_session_status(
    session_id: str,
    store: SessionStore = Depends(get_session_store),
) -> SessionStatus:
    session = _require_session(store, session_id)
    return SessionStatus(
        session_id=session.id,
        campaign_name=session.campaign_name,
        platform=session.platform,
        created_at=session.created_at.isoformat(),
        file_counts=FileCounts(**store.file_counts(session)),
    )


@router.delete(
    "/sessions/{session_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["sessions"],
    summary="Delete a session and its files",
)
def delete_session(
    session_id: str,
    store: SessionStore = Depends(get_session_store),
) -> Response:
    try:
        deleted = store.delete_session(session_id)
    except SessionStorageError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete session.",
        ) from exc
    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Session not found.",
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/sessions/{session_id}/analysis",
    response_model=AnalysisResponse,
    tags=["layouts"],
    summary="Analyze the session's product images",
)
def get_analysis(
    session_id: str,
    store: SessionStore = Depends(get_session_store),
    settings: Settings = Depends(get_settings),
) -> AnalysisResponse:
    """
    Return visual metrics for every product image.

    Images that could not be decoded are listed in `failures`; they never
    prevent the others from being analyzed.
    """
    session = _require_session(store, session_id)
    result = run_campaign_pipeline(session, store, max_workers=settings.analysis_max_workers)
    return AnalysisResponse(
        session_id=session.id,
        analyses=[ImageAnalysisOut.model_validate(analysis) for analysis in result.batch.analyses],
        failures=[AnalysisFailureOut.from_failure(failure) for failure in result.batch.failures],
    )


@router.get(
    "/sessions/{session_id}/matches",
    response_model=MatchResponse,
    tags=["layouts"],
    summary="Match product images to product table rows by SKU",
)
def get_matches(
    session_id: str,
    store: SessionStore = Depends(get_session_store),
) -> MatchResponse:
    """
    Match every uploaded product image to the product table by file name.

    No image is decoded here, so images that fail analysis are still matched
    and counted in `match_rate`.
    """
    session = _require_session(store, session_id)
    if session.product_table_path is None:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Session has no product table to match against.",
        )
    try:
        table, match = match_session_products(session, store)
    except TableFormatError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc),
        ) from exc
    except SessionStorageError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to read the product table.",
        ) from exc

    return MatchResponse(
        session_id=session.id,
        columns=table.columns,
        record_count=len(table.records),
        warnings=table.warnings,
        match=MatchResultOut.from_result(match) if match else None,
        errors=[] if match else ["Product table has no records to match against."],
    )


@router.get(
    "/sessions/{session_id}/layouts",
    response_model=LayoutsResponse,
    tags=["layouts"],
    summary="Generate layout recommendations",
)
def get_layouts(
    session_id: str,
    store: SessionStore = Depends(get_session_store),
    settings: Settings = Depends(get_settings),
) -> LayoutsResponse:
    """
    Generate grid, banner, story and carousel layouts, highest priority first.

    Every position is a percentage of the layout's recommended canvas size,
    so any renderer can scale it. Nothing is cached; layouts are recomputed
    from the stored files on every call.
    """
    session = _require_session(store, session_id)
    result = run_campaign_pipeline(session, store, max_workers=settings.analysis_max_workers)
    if not result.layouts:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=result.errors[-1] if result.errors else "No layouts could be generated.",
        )

    return LayoutsResponse(
        session_id=session.id,
        layouts=[LayoutOut.from_layout(layout) for layout in result.layouts],
        product_count=len(result.batch.analyses),
        has_frame=session.frame is not None,
        icon_count=len(session.icons),
        failures=[AnalysisFailureOut.from_failure(failure) for failure in result.batch.failures],
        errors=result.errors,
    )
