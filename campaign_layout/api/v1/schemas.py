from __future__ import annotations

from typing import Annotated, Dict, List, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from campaign_layout.models.campaign import (
    AnalysisFailure,
    Layout,
    LayoutElement,
    MatchedImage,
    MatchResult,
    ProductRecord,
)


class SessionCreateResponse(BaseModel):
    """Response returned when a new campaign session is created."""

    session_id: str = Field(..., description="Server-generated unique session identifier.")


class AssetRefOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    file_name: str = Field(..., description="Original (sanitised) file name used for SKU matching.")
    url: str = Field(..., description="URL a renderer can load the asset from.")
    sku: str | None = Field(default=None, description="SKU of the matched product table row, if any.")


class UploadResponse(BaseModel):
    """Files currently stored for a session after an upload."""

    session_id: str
    campaign_name: str
    platform: str
    products: List[AssetRefOut] = Field(default_factory=list)
    icons: List[AssetRefOut] = Field(default_factory=list)
    fonts: List[AssetRefOut] = Field(default_factory=list)
    frame: AssetRefOut | None = None
    has_product_table: bool = False


class FileCounts(BaseModel):
    products: int
    icons: int
    fonts: int
    has_frame: bool
    has_product_table: bool


class SessionStatus(BaseModel):
    """Lightweight view of a session suitable for polling."""

    session_id: str
    campaign_name: str
    platform: str
    created_at: str = Field(..., description="Session creation timestamp in ISO 8601 format (UTC).")
    file_counts: FileCounts


class MetricIssueOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    metric: str
    message: str


class ImageAnalysisOut(BaseModel):
    """Visual metrics computed for one product image."""

    model_config = ConfigDict(from_attributes=True)

    file_name: str
    source_ref: str
    width: int
    height: int
    format: str | None = None
    aspect_ratio: float
    brightness: float = Field(..., ge=0, le=255)
    complexity: float = Field(..., ge=0, le=1)
    dominant_color: str
    recommended_use: Literal["banner", "vertical", "square"]
    layout_priority: int = Field(..., ge=1, le=5)
    issues: List[MetricIssueOut] = Field(
        default_factory=list,
        description="Metrics that fell back to their default value.",
    )


class AnalysisFailureOut(BaseModel):
    file_name: str
    url: str
    error: str

    @classmethod
    def from_failure(cls, failure: AnalysisFailure) -> "AnalysisFailureOut":
        return cls(file_name=failure.ref.file_name, url=failure.ref.url, error=failure.error)


class AnalysisResponse(BaseModel):
    session_id: str
    analyses: List[ImageAnalysisOut] = Field(default_factory=list)
    failures: List[AnalysisFailureOut] = Field(default_factory=list)


class ProductRecordOut(BaseModel):
    row_index: int
    fields: Dict[str, str] = Field(
        default_factory=dict,
        description="Original columns plus the canonical fields resolved from them.",
    )

    @classmethod
    def from_record(cls, record: ProductRecord) -> "ProductRecordOut":
        return cls(row_index=record.row_index, fields=record.as_dict())


class MatchedImageOut(BaseModel):
    image: AssetRefOut
    record: ProductRecordOut
    matched_sku: str
    strategy: Literal["exact", "contains", "reverse_contains"]

    @classmethod
    def from_match(cls, match: MatchedImage) -> "MatchedImageOut":
        return cls(
            image=AssetRefOut.model_validate(match.image),
            record=ProductRecordOut.from_record(match.record),
            matched_sku=match.matched_sku,
            strategy=match.strategy,
        )


class MatchResultOut(BaseModel):
    matched: List[MatchedImageOut] = Field(default_factory=list)
    unmatched_products: List[ProductRecordOut] = Field(default_factory=list)
    unmatched_images: List[AssetRefOut] = Field(default_factory=list)
    match_rate: float = Field(..., description="Matched images as a percentage of all images.")

    @classmethod
    def from_result(cls, result: MatchResult) -> "MatchResultOut":
        return cls(
            matched=[MatchedImageOut.from_match(item) for item in result.matched],
            unmatched_products=[ProductRecordOut.from_record(record) for record in result.unmatched_products],
            unmatched_images=[AssetRefOut.model_validate(ref) for ref in result.unmatched_images],
            match_rate=result.match_rate,
        )


class MatchResponse(BaseModel):
    session_id: str
    columns: List[str] = Field(default_factory=list)
    record_count: int = 0
    warnings: List[str] = Field(default_factory=list)
    match: MatchResultOut | None = None
    errors: List[str] = Field(default_factory=list)


class PositionOut(BaseModel):
    """Element box in percent of the recommended canvas size."""

    model_config = ConfigDict(from_attributes=True)

    x: float
    y: float
    width: float
    height: float


class TextStyleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    font_size: int
    color: str
    font_weight: str | None = None
    text_align: str
    background_color: str | None = None
    text_decoration: str | None = None
    border_radius: str | None = None


class ImageElementOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    type: Literal["image"] = "image"
    source: str
    position: PositionOut
    z_index: int


class FrameElementOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    type: Literal["frame"] = "frame"
    source: str
    position: PositionOut
    z_index: int


class IconElementOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    type: Literal["icon"] = "icon"
    source: str
    position: PositionOut
    z_index: int


class TextElementOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    type: Literal["text"] = "text"
    content: str
    position: PositionOut
    style: TextStyleOut
    z_index: int
    data_field: str | None = None


class BadgeElementOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    type: Literal["badge"] = "badge"
    content: str
    position: PositionOut
    style: TextStyleOut
    z_index: int
    data_field: str | None = None


LayoutElementOut = Annotated[
    Union[ImageElementOut, FrameElementOut, IconElementOut, TextElementOut, BadgeElementOut],
    Field(discriminator="type"),
]

_ELEMENT_SCHEMAS = {
    "image": ImageElementOut,
    "frame": FrameElementOut,
    "icon": IconElementOut,
    "text": TextElementOut,
    "badge": BadgeElementOut,
}


def element_to_schema(element: LayoutElement) -> BaseModel:
    return _ELEMENT_SCHEMAS[element.kind].model_validate(element)


class CanvasSizeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    width: int
    height: int


class SlideOut(BaseModel):
    type: Literal["title", "product"]
    elements: List[LayoutElementOut] = Field(default_factory=list)


class LayoutOut(BaseModel):
    """
    One generated layout.

    Single-canvas templates carry `elements`; the carousel carries `slides`
    and leaves `elements` unset.
    """

    type: Literal["grid", "banner", "story", "carousel"]
    name: str
    description: str
    recommended_canvas_size: CanvasSizeOut
    priority: int
    elements: List[LayoutElementOut] | None = None
    slides: List[SlideOut] | None = None

    @classmethod
    def from_layout(cls, layout: Layout) -> "LayoutOut":
        slides = None
        elements = None
        if layout.slides:
            slides = [
                SlideOut(type=slide.type, elements=[element_to_schema(e) for e in slide.elements])
                for slide in layout.slides
            ]
        else:
            elements = [element_to_schema(e) for e in layout.elements]
        return cls(
            type=layout.type,
            name=layout.name,
            description=layout.description,
            recommended_canvas_size=CanvasSizeOut.model_validate(layout.recommended_canvas_size),
            priority=layout.priority,
            elements=elements,
            slides=slides,
        )


class LayoutsResponse(BaseModel):
    session_id: str
    layouts: List[LayoutOut] = Field(default_factory=list)
    product_count: int = 0
    has_frame: bool = False
    icon_count: int = 0
    failures: List[AnalysisFailureOut] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
