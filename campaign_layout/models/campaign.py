from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import ClassVar, Dict, List, Tuple, Union

from campaign_layout.services.errors import MetricComputationWarning


def utcnow() -> datetime:
    """Return an explicit, timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


@dataclass(slots=True, frozen=True)
class AssetRef:
    """
    Stable reference to an uploaded file (product image, frame or icon).

    `file_name` is the filename-like string used for SKU matching and
    captions; `url` is what a renderer loads. Product images that matched a
    product table row carry that row's `sku`.
    """

    file_name: str
    url: str
    sku: str | None = None


@dataclass(slots=True, frozen=True)
class ImageAnalysis:
    """
    Visual metrics for a single product image.

    Computed exactly once per image and never mutated afterwards. Any metric
    that fell back to its default is listed in `issues`.
    """

    width: int
    height: int
    format: str | None
    aspect_ratio: float
    file_name: str
    # Mean luminance in [0, 255].
    brightness: float
    # Edge density of the downscaled image in [0, 1].
    complexity: float
    # Per-channel mean color as "#rrggbb".
    dominant_color: str
    recommended_use: str
    layout_priority: int
    source_ref: str
    issues: Tuple[MetricComputationWarning, ...] = ()

    @property
    def ref(self) -> AssetRef:
        return AssetRef(file_name=self.file_name, url=self.source_ref)


@dataclass(slots=True)
class AnalysisFailure:
    """An image whose bytes could not be decoded."""

    ref: AssetRef
    error: str


@dataclass(slots=True)
class BatchAnalysis:
    """Result of analyzing a batch of images, in submission order."""

    analyses: List[ImageAnalysis] = field(default_factory=list)
    failures: List[AnalysisFailure] = field(default_factory=list)


@dataclass(slots=True)
class ProductRecord:
    """
    A single normalized row of a product table.

    `canonical` holds the alias-resolved fields (sku, brand, product_name, ...)
    while `columns` keeps every original value under its normalized header, so
    nothing from the source row is lost.
    """

    row_index: int
    canonical: Dict[str, str] = field(default_factory=dict)
    columns: Dict[str, str] = field(default_factory=dict)

    def get(self, key: str, default: str | None = None) -> str | None:
        value = self.canonical.get(key)
        if value:
            return value
        value = self.columns.get(key)
        return value if value else default

    @property
    def sku(self) -> str | None:
        return self.canonical.get("sku") or None

    def as_dict(self) -> Dict[str, str]:
        merged = dict(self.columns)
        merged.update(self.canonical)
        return merged


@dataclass(slots=True)
class ParsedTable:
    records: List[ProductRecord] = field(default_factory=list)
    columns: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass(slots=True)
class MatchedImage:
    image: AssetRef
    record: ProductRecord
    matched_sku: str
    # Heuristic that produced the match: exact, contains or reverse_contains.
    strategy: str


@dataclass(slots=True)
class MatchResult:
    matched: List[MatchedImage] = field(default_factory=list)
    unmatched_products: List[ProductRecord] = field(default_factory=list)
    unmatched_images: List[AssetRef] = field(default_factory=list)
    # Percentage of images that matched a record, one decimal place.
    match_rate: float = 0


@dataclass(slots=True, frozen=True)
class Position:
    """Element box in percent of the canvas (0-100 on both axes)."""

    x: float
    y: float
    width: float
    height: float


FULL_BLEED = Position(x=0, y=0, width=100, height=100)


@dataclass(slots=True, frozen=True)
class TextStyle:
    font_size: int
    color: str = "#000000"
    font_weight: str | None = None
    text_align: str = "center"
    background_color: str | None = None
    text_decoration: str | None = None
    border_radius: str | None = None


@dataclass(slots=True, frozen=True)
class ImageElement:
    kind: ClassVar[str] = "image"

    source: str
    position: Position
    z_index: int = 1


@dataclass(slots=True, frozen=True)
class FrameElement:
    kind: ClassVar[str] = "frame"

    source: str
    position: Position = FULL_BLEED
    z_index: int = 0


@dataclass(slots=True, frozen=True)
class IconElement:
    kind: ClassVar[str] = "icon"

    source: str
    position: Position
    z_index: int = 2


@dataclass(slots=True, frozen=True)
class TextElement:
    kind: ClassVar[str] = "text"

    content: str
    position: Position
    style: TextStyle
    z_index: int = 10
    # Product table field the content was taken from, if any.
    data_field: str | None = None


@dataclass(slots=True, frozen=True)
class BadgeElement:
    kind: ClassVar[str] = "badge"

    content: str
    position: Position
    style: TextStyle
    z_index: int = 11
    data_field: str | None = None


LayoutElement = Union[ImageElement, FrameElement, IconElement, TextElement, BadgeElement]


@dataclass(slots=True, frozen=True)
class CanvasSize:
    width: int
    height: int


@dataclass(slots=True)
class Slide:
    """One carousel slide; `type` is "title" or "product"."""

    type: str
    elements: List[LayoutElement] = field(default_factory=list)


@dataclass(slots=True)
class Layout:
    """
    A declarative, percentage-positioned arrangement for one canvas template.

    Single-canvas templates fill `elements`; the carousel fills `slides`
    instead and leaves `elements` empty.
    """

    type: str
    name: str
    description: str
    recommended_canvas_size: CanvasSize
    priority: int
    elements: List[LayoutElement] = field(default_factory=list)
    slides: List[Slide] = field(default_factory=list)


@dataclass(slots=True)
class CampaignSession:
    """
    Internal representation of an uploaded campaign session.

    Holds references to files persisted by the session store; none of the
    analysis results are kept here, they are recomputed per request.
    """

    id: str
    base_dir: str
    campaign_name: str = "Untitled Campaign"
    platform: str = "general"
    products: List[AssetRef] = field(default_factory=list)
    icons: List[AssetRef] = field(default_factory=list)
    fonts: List[AssetRef] = field(default_factory=list)
    frame: AssetRef | None = None
    product_table_path: str | None = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass(slots=True)
class CampaignResult:
    """Everything one pipeline run produced for a session."""

    batch: BatchAnalysis
    table: ParsedTable | None = None
    match: MatchResult | None = None
    layouts: List[Layout] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
