from __future__ import annotations

import logging
import math
from typing import List, Sequence, Tuple

from campaign_layout.models.campaign import (
    AssetRef,
    BadgeElement,
    CanvasSize,
    FrameElement,
    IconElement,
    ImageAnalysis,
    ImageElement,
    Layout,
    LayoutElement,
    Position,
    ProductRecord,
    Slide,
    TextElement,
    TextStyle,
)
from campaign_layout.services.errors import NoDataError
from campaign_layout.services.matching import SkuIndex


logger = logging.getLogger(__name__)

GRID_CANVAS = CanvasSize(width=1200, height=1200)
BANNER_CANVAS = CanvasSize(width=1200, height=630)
STORY_CANVAS = CanvasSize(width=1080, height=1920)
CAROUSEL_CANVAS = CanvasSize(width=1080, height=1080)

# Static template ranking; only the grid priority depends on the input.
BANNER_PRIORITY = 4
STORY_PRIORITY = 3
CAROUSEL_PRIORITY = 5

Z_FRAME = 0
Z_PHOTO = 1
Z_ICON = 2
Z_TEXT = 10
Z_BADGE = 11

# Heights (in canvas percent) of the stacked product text rows.
NAME_ROW_HEIGHT = 8
BRAND_ROW_HEIGHT = 5
PRICE_ROW_HEIGHT = 5

BADGE_WIDTH = 15
BADGE_HEIGHT = 8

ACCENT_COLOR = "#E53E3E"

BANNER_MAX_SECONDARY_PRODUCTS = 3
BANNER_MAX_ICONS = 3

STORY_PLACEHOLDER = "Your Product Title Here"
CAROUSEL_TITLE = "Product Collection"


def _box(x: float, y: float, width: float, height: float) -> Position:
    """
    Build a position clamped to the 0-100 canvas and rounded to 4 decimals.

    Large grids put their last row and column a little past the edge; those
    boxes are trimmed rather than allowed to leave the canvas.
    """
    x = round(min(max(x, 0.0), 100.0), 4)
    y = round(min(max(y, 0.0), 100.0), 4)
    width = round(min(max(width, 0.0), 100.0 - x), 4)
    height = round(min(max(height, 0.0), 100.0 - y), 4)
    return Position(x=x, y=y, width=width, height=height)


def calculate_grid_priority(product_count: int) -> int:
    if product_count >= 9:
        return 5
    if product_count >= 6:
        return 4
    if product_count >= 4:
        return 3
    if product_count >= 2:
        return 2
    return 1


def grid_dimensions(product_count: int) -> int:
    """Side length of the square grid needed for `product_count` cells."""
    return max(1, math.ceil(math.sqrt(product_count)))


def grid_cell(index: int, grid_size: int) -> Tuple[int, int]:
    """(row, column) of cell `index` in a row-major grid."""
    return index // grid_size, index % grid_size


def format_discount(value: str) -> str | None:
    """Render a discount value as '-N%', tolerating '-N' or 'N%' input."""
    cleaned = value.strip().lstrip("-").rstrip("%").strip()
    if not cleaned:
        return None
    return f"-{cleaned}%"


def compose_product_text(
    record: ProductRecord,
    region: Position,
    image_box: Position | None = None,
    name_font_size: int = 16,
) -> List[LayoutElement]:
    """
    Build the text and badge elements for one product record.

    Rows are stacked from the top of `region`: product name, brand, then the
    price block. With both prices the full price is struck through in the
    left half and the discounted price is emphasised in the right half; a
    single price is centred. A discount badge is pinned inside the top-right
    corner of `image_box` (or of the region when no image box is given).

    Row heights are shrunk proportionally when the region is shorter than
    the rows need, so the text never leaves the region.
    """
    elements: List[LayoutElement] = []
    cursor = region.y

    product_name = record.get("product_name")
    brand = record.get("brand")
    full_price = record.get("full_price")
    discounted_price = record.get("discounted_price")

    needed = (
        (NAME_ROW_HEIGHT if product_name else 0)
        + (BRAND_ROW_HEIGHT if brand else 0)
        + (PRICE_ROW_HEIGHT if full_price or discounted_price else 0)
    )
    scale = min(1.0, region.height / needed) if needed else 1.0
    name_height = NAME_ROW_HEIGHT * scale
    brand_height = BRAND_ROW_HEIGHT * scale
    price_height = PRICE_ROW_HEIGHT * scale

    if product_name:
        elements.append(
            TextElement(
                content=product_name,
                position=_box(region.x, cursor, region.width, name_height),
                style=TextStyle(font_size=name_font_size, font_weight="bold", text_align="center"),
                z_index=Z_TEXT,
                data_field="product_name",
            )
        )
        cursor += name_height

    if brand:
        elements.append(
            TextElement(
                content=brand,
                position=_box(region.x, cursor, region.width, brand_height),
                style=TextStyle(font_size=max(name_font_size - 4, 10), color="#666666"),
                z_index=Z_TEXT,
                data_field="brand",
            )
        )
        cursor += brand_height

    if full_price and discounted_price:
        half = region.width / 2
        elements.append(
            TextElement(
                content=full_price,
                position=_box(region.x, cursor, half, price_height),
                style=TextStyle(
                    font_size=max(name_font_size - 2, 10),
                    color="#999999",
                    text_align="right",
                    text_decoration="line-through",
                ),
                z_index=Z_TEXT,
                data_field="full_price",
            )
        )
        elements.append(
            TextElement(
                content=discounted_price,
                position=_box(region.x + half, cursor, half, price_height),
                style=TextStyle(
                    font_size=name_font_size,
                    color=ACCENT_COLOR,
                    font_weight="bold",
                    text_align="left",
                ),
                z_index=Z_TEXT,
                data_field="discounted_price",
            )
        )
    elif full_price or discounted_price:
        elements.append(
            TextElement(
                content=discounted_price or full_price,
                position=_box(region.x, cursor, region.width, price_height),
                style=TextStyle(font_size=name_font_size, font_weight="bold", text_align="center"),
                z_index=Z_TEXT,
                data_field="discounted_price" if discounted_price else "full_price",
            )
        )

    discount = record.get("discount_percent")
    badge_text = format_discount(discount) if discount else None
    if badge_text:
        anchor = image_box or region
        width = min(BADGE_WIDTH, anchor.width)
        height = min(BADGE_HEIGHT, anchor.height)
        elements.append(
            BadgeElement(
                content=badge_text,
                position=_box(anchor.x + anchor.width - width, anchor.y, width, height),
                style=TextStyle(
                    font_size=14,
                    color="#FFFFFF",
                    font_weight="bold",
                    text_align="center",
                    background_color=ACCENT_COLOR,
                    border_radius="4px",
                ),
                z_index=Z_BADGE,
                data_field="discount_percent",
            )
        )

    return elements


def _frame_elements(frame: AssetRef | None) -> List[LayoutElement]:
    if frame is None:
        return []
    return [FrameElement(source=frame.url, z_index=Z_FRAME)]


def _lookup(index: SkuIndex | None, image: ImageAnalysis) -> ProductRecord | None:
    if index is None:
        return None
    hit = index.resolve(image.file_name)
    return hit.record if hit else None


def build_grid_layout(
    images: Sequence[ImageAnalysis],
    frame: AssetRef | None,
    index: SkuIndex | None,
) -> Layout:
    """
    Square grid, one cell per image in input order.

    Each cell box is 96/grid_size percent, offset by a 2% margin; the image
    fills 90% x 60% of the box and product text sits beneath it.
    """
    grid_size = grid_dimensions(len(images))
    cell = 96 / grid_size
    pitch = 100 / grid_size

    elements = _frame_elements(frame)
    for i, image in enumerate(images):
        row, col = grid_cell(i, grid_size)
        x = col * pitch + 2
        y = row * pitch + 2
        image_box = _box(x, y, cell * 0.9, cell * 0.6)
        elements.append(ImageElement(source=image.source_ref, position=image_box, z_index=Z_PHOTO))

        record = _lookup(index, image)
        if record is not None:
            region = _box(x, y + cell * 0.6, cell * 0.9, cell * 0.3)
            elements.extend(compose_product_text(record, region, image_box, name_font_size=16))

    return Layout(
        type="grid",
        name="Product Grid",
        description="Organized grid layout perfect for catalogs",
        recommended_canvas_size=GRID_CANVAS,
        priority=calculate_grid_priority(len(images)),
        elements=elements,
    )


def build_banner_layout(
    images: Sequence[ImageAnalysis],
    frame: AssetRef | None,
    icons: Sequence[AssetRef],
    index: SkuIndex | None,
) -> Layout:
    """Wide banner: hero product on the right, up to three thumbnails and icons on the left."""
    elements = _frame_elements(frame)

    if images:
        hero = images[0]
        hero_box = _box(60, 10, 35, 60)
        elements.append(ImageElement(source=hero.source_ref, position=hero_box, z_index=Z_PHOTO))
        record = _lookup(index, hero)
        if record is not None:
            elements.extend(
                compose_product_text(record, _box(60, 72, 35, 20), hero_box, name_font_size=20)
            )

    for i, image in enumerate(images[1 : 1 + BANNER_MAX_SECONDARY_PRODUCTS], start=1):
        elements.append(
            ImageElement(
                source=image.source_ref,
                position=_box(5, 20 + (i - 1) * 18, 15, 15),
                z_index=Z_PHOTO,
            )
        )

    for i, icon in enumerate(icons[:BANNER_MAX_ICONS]):
        elements.append(
            IconElement(source=icon.url, position=_box(25, 20 + i * 25, 8, 8), z_index=Z_ICON)
        )

    return Layout(
        type="banner",
        name="Campaign Banner",
        description="Wide banner layout for social media",
        recommended_canvas_size=BANNER_CANVAS,
        priority=BANNER_PRIORITY,
        elements=elements,
    )


def build_story_layout(
    images: Sequence[ImageAnalysis],
    frame: AssetRef | None,
    index: SkuIndex | None,
) -> Layout:
    """Vertical story: one hero product with its text block, or a placeholder title."""
    elements = _frame_elements(frame)

    if images:
        hero = images[0]
        hero_box = _box(10, 15, 80, 50)
        elements.append(ImageElement(source=hero.source_ref, position=hero_box, z_index=Z_PHOTO))
        record = _lookup(index, hero)
        if record is not None:
            elements.extend(
                compose_product_text(record, _box(10, 68, 80, 20), hero_box, name_font_size=24)
            )
        else:
            elements.append(
                TextElement(
                    content=STORY_PLACEHOLDER,
                    position=_box(10, 70, 80, 10),
                    style=TextStyle(font_size=24, font_weight="bold", text_align="center"),
                    z_index=Z_TEXT,
                )
            )

    return Layout(
        type="story",
        name="Story Format",
        description="Vertical layout for Instagram Stories",
        recommended_canvas_size=STORY_CANVAS,
        priority=STORY_PRIORITY,
        elements=elements,
    )


def build_carousel_layout(
    images: Sequence[ImageAnalysis],
    frame: AssetRef | None,
    index: SkuIndex | None,
) -> Layout:
    """A title slide followed by one slide per product image."""
    slides: List[Slide] = [
        Slide(
            type="title",
            elements=_frame_elements(frame)
            + [
                TextElement(
                    content=CAROUSEL_TITLE,
                    position=_box(10, 40, 80, 20),
                    style=TextStyle(font_size=36, font_weight="bold", text_align="center"),
                    z_index=Z_TEXT,
                )
            ],
        )
    ]

    for n, image in enumerate(images, start=1):
        image_box = _box(10, 15, 80, 55)
        slide_elements = _frame_elements(frame)
        slide_elements.append(ImageElement(source=image.source_ref, position=image_box, z_index=Z_PHOTO))
        record = _lookup(index, image)
        if record is not None:
            slide_elements.extend(
                compose_product_text(record, _box(10, 72, 80, 20), image_box, name_font_size=20)
            )
        else:
            slide_elements.append(
                TextElement(
                    content=f"Product {n}",
                    position=_box(10, 75, 80, 10),
                    style=TextStyle(font_size=18, color="#333333", text_align="center"),
                    z_index=Z_TEXT,
                )
            )
        slides.append(Slide(type="product", elements=slide_elements))

    return Layout(
        type="carousel",
        name="Product Carousel",
        description="Multiple slides for product showcases",
        recommended_canvas_size=CAROUSEL_CANVAS,
        priority=CAROUSEL_PRIORITY,
        slides=slides,
    )


def compose_layouts(
    images: Sequence[ImageAnalysis],
    frame: AssetRef | None = None,
    icons: Sequence[AssetRef] = (),
    records: Sequence[ProductRecord] | None = None,
) -> List[Layout]:
    """
    Generate grid, banner, story and carousel layouts for a set of images.

    Images are placed in the order given. When product records are supplied,
    each image is paired with its record using the same SKU strategies as
    matching. The result is sorted by priority, highest first; templates with
    equal priority keep the order grid, banner, story, carousel.
    """
    if not images:
        raise NoDataError("Cannot compose layouts without at least one analyzed image.")

    index = SkuIndex(records) if records else None
    layouts = [
        build_grid_layout(images, frame, index),
        build_banner_layout(images, frame, icons, index),
        build_story_layout(images, frame, index),
        build_carousel_layout(images, frame, index),
    ]
    logger.info(
        "Composed %d layouts for %d image(s), frame=%s, icons=%d",
        len(layouts),
        len(images),
        frame is not None,
        len(icons),
    )
    return sorted(layouts, key=lambda layout: layout.priority, reverse=True)
