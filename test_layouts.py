"""Tests for layout composition across the four canvas templates."""

import pytest

from campaign_layout.models.campaign import (
    AssetRef,
    BadgeElement,
    FrameElement,
    IconElement,
    ImageAnalysis,
    ImageElement,
    Position,
    ProductRecord,
    TextElement,
)
from campaign_layout.services.errors import NoDataError
from campaign_layout.services.layouts import (
    calculate_grid_priority,
    compose_layouts,
    compose_product_text,
    format_discount,
    grid_cell,
    grid_dimensions,
)


def _analysis(name: str) -> ImageAnalysis:
    return ImageAnalysis(
        width=800,
        height=800,
        format="png",
        aspect_ratio=1.0,
        file_name=name,
        brightness=120.0,
        complexity=0.2,
        dominant_color="#336699",
        recommended_use="square",
        layout_priority=3,
        source_ref=f"/uploads/s/products/{name}",
    )


def _images(count: int):
    return [_analysis(f"img{i}.png") for i in range(count)]


def _record(sku: str, row_index: int = 0, **fields) -> ProductRecord:
    canonical = {"sku": sku, **fields}
    return ProductRecord(row_index=row_index, canonical=canonical, columns=dict(canonical))


def _by_type(layouts):
    return {layout.type: layout for layout in layouts}


def _all_elements(layout):
    if layout.slides:
        return [element for slide in layout.slides for element in slide.elements]
    return layout.elements


FRAME = AssetRef(file_name="frame.png", url="/uploads/s/frame/frame.png")
ICONS = [AssetRef(file_name=f"icon{i}.png", url=f"/uploads/s/icons/icon{i}.png") for i in range(5)]


@pytest.mark.parametrize(
    "count, expected",
    [(1, 1), (2, 2), (3, 2), (4, 3), (5, 3), (6, 4), (8, 4), (9, 5), (20, 5)],
)
def test_grid_priority_steps(count, expected):
    assert calculate_grid_priority(count) == expected


@pytest.mark.parametrize("count, expected", [(1, 1), (2, 2), (4, 2), (5, 3), (9, 3), (10, 4)])
def test_grid_dimensions(count, expected):
    assert grid_dimensions(count) == expected


def test_grid_cells_are_row_major():
    assert [grid_cell(i, 3) for i in range(4)] == [(0, 0), (0, 1), (0, 2), (1, 0)]


def test_four_images_use_two_by_two_grid():
    grid = _by_type(compose_layouts(_images(4)))["grid"]

    photos = [e for e in grid.elements if isinstance(e, ImageElement)]
    assert [p.source for p in photos] == [f"/uploads/s/products/img{i}.png" for i in range(4)]
    assert photos[0].position == Position(x=2, y=2, width=43.2, height=28.8)
    assert photos[1].position == Position(x=52, y=2, width=43.2, height=28.8)
    assert photos[2].position == Position(x=2, y=52, width=43.2, height=28.8)
    assert grid.recommended_canvas_size.width == 1200
    assert grid.priority == 3


def test_positions_stay_inside_the_canvas():
    records = [
        _record(f"IMG{i}", row_index=i, product_name="Runner", brand="Acme", full_price="$10", discounted_price="$8")
        for i in range(10)
    ]
    for layout in compose_layouts(_images(10), frame=FRAME, icons=ICONS, records=records):
        for element in _all_elements(layout):
            pos = element.position
            assert 0 <= pos.x <= 100 and 0 <= pos.y <= 100
            assert pos.x + pos.width <= 100 + 1e-9
            assert pos.y + pos.height <= 100 + 1e-9


@pytest.mark.parametrize("count", [16, 49])
def test_large_grids_keep_text_on_the_canvas(count):
    records = [
        _record(f"IMG{i}", row_index=i, product_name="Runner", brand="Acme", full_price="$10", discount_percent="5")
        for i in range(count)
    ]
    grid = _by_type(compose_layouts(_images(count), records=records))["grid"]

    texts = [e for e in grid.elements if isinstance(e, TextElement)]
    assert len(texts) == count * 3
    for element in grid.elements:
        pos = element.position
        assert pos.x + pos.width <= 100 + 1e-9
        assert pos.y + pos.height <= 100 + 1e-9


def test_text_rows_shrink_to_fit_a_short_region():
    record = _record("A1", product_name="Runner", brand="Acme", full_price="$10", discounted_price="$8")
    region = Position(2, 16.4, 21.6, 7.2)

    elements = compose_product_text(record, region)

    assert [e.data_field for e in elements] == ["product_name", "brand", "full_price", "discounted_price"]
    assert elements[0].position.y == pytest.approx(16.4)
    # 8 + 5 + 5 rows scaled down to the 7.2 available.
    assert elements[0].position.height == pytest.approx(3.2)
    assert elements[1].position.height == pytest.approx(2.0)
    for element in elements:
        assert element.position.y >= region.y - 1e-9
        assert element.position.y + element.position.height <= region.y + region.height + 1e-3


@pytest.mark.parametrize(
    "count, order",
    [
        (1, ["carousel", "banner", "story", "grid"]),
        (4, ["carousel", "banner", "grid", "story"]),
        (6, ["carousel", "grid", "banner", "story"]),
        (9, ["grid", "carousel", "banner", "story"]),
    ],
)
def test_layouts_are_sorted_by_priority_with_stable_ties(count, order):
    layouts = compose_layouts(_images(count))
    assert [layout.type for layout in layouts] == order
    priorities = [layout.priority for layout in layouts]
    assert priorities == sorted(priorities, reverse=True)


def test_canvas_sizes():
    sizes = {
        layout.type: (layout.recommended_canvas_size.width, layout.recommended_canvas_size.height)
        for layout in compose_layouts(_images(1))
    }
    assert sizes == {
        "grid": (1200, 1200),
        "banner": (1200, 630),
        "story": (1080, 1920),
        "carousel": (1080, 1080),
    }


def test_frame_is_first_and_appears_once_per_canvas():
    layouts = _by_type(compose_layouts(_images(3), frame=FRAME))

    for name in ("grid", "banner", "story"):
        elements = layouts[name].elements
        frames = [e for e in elements if isinstance(e, FrameElement)]
        assert len(frames) == 1
        assert elements[0] is frames[0]
        assert frames[0].position == Position(0, 0, 100, 100)
        assert frames[0].z_index == 0
        assert frames[0].source == FRAME.url

    carousel = layouts["carousel"]
    assert carousel.elements == []
    for slide in carousel.slides:
        assert isinstance(slide.elements[0], FrameElement)
        assert sum(isinstance(e, FrameElement) for e in slide.elements) == 1


def test_no_frame_means_no_frame_elements():
    for layout in compose_layouts(_images(2)):
        assert not any(isinstance(e, FrameElement) for e in _all_elements(layout))


def test_z_order_frame_photo_icon_text_badge():
    records = [_record("img0", product_name="Runner", discount_percent="20")]
    layouts = compose_layouts(_images(2), frame=FRAME, icons=ICONS, records=records)
    expected = {FrameElement: 0, ImageElement: 1, IconElement: 2, TextElement: 10, BadgeElement: 11}

    seen = set()
    for layout in layouts:
        for element in _all_elements(layout):
            assert element.z_index == expected[type(element)]
            seen.add(type(element))
    assert seen == set(expected)


def test_banner_caps_thumbnails_and_icons():
    banner = _by_type(compose_layouts(_images(6), icons=ICONS))["banner"]

    photos = [e for e in banner.elements if isinstance(e, ImageElement)]
    icons = [e for e in banner.elements if isinstance(e, IconElement)]
    assert len(photos) == 4
    assert photos[0].position == Position(60, 10, 35, 60)
    assert [p.position.y for p in photos[1:]] == [20, 38, 56]
    assert len(icons) == 3
    assert [i.position for i in icons] == [
        Position(25, 20, 8, 8),
        Position(25, 45, 8, 8),
        Position(25, 70, 8, 8),
    ]
    assert [i.source for i in icons] == [icon.url for icon in ICONS[:3]]


def test_story_without_record_shows_placeholder():
    story = _by_type(compose_layouts(_images(2)))["story"]

    texts = [e for e in story.elements if isinstance(e, TextElement)]
    assert [t.content for t in texts] == ["Your Product Title Here"]
    assert texts[0].position == Position(10, 70, 80, 10)
    assert texts[0].style.font_size == 24
    assert len([e for e in story.elements if isinstance(e, ImageElement)]) == 1


def test_carousel_slides_and_fallback_text():
    records = [_record("img0", product_name="Runner")]
    carousel = _by_type(compose_layouts(_images(2), records=records))["carousel"]

    assert [slide.type for slide in carousel.slides] == ["title", "product", "product"]
    title = carousel.slides[0].elements[0]
    assert title.content == "Product Collection"
    assert title.style.font_size == 36

    first_texts = [e.content for e in carousel.slides[1].elements if isinstance(e, TextElement)]
    second_texts = [e for e in carousel.slides[2].elements if isinstance(e, TextElement)]
    assert first_texts == ["Runner"]
    assert [t.content for t in second_texts] == ["Product 2"]
    assert second_texts[0].position == Position(10, 75, 80, 10)
    assert second_texts[0].style.color == "#333333"


def test_product_text_rows_stack_in_order():
    record = _record("A1", product_name="Runner", brand="Acme", full_price="$120")
    elements = compose_product_text(record, Position(10, 68, 80, 20), name_font_size=24)

    assert [e.data_field for e in elements] == ["product_name", "brand", "full_price"]
    assert [e.position.y for e in elements] == [68, 76, 81]
    assert elements[0].style.font_weight == "bold"
    assert elements[1].style.font_size == 20
    assert elements[1].style.color == "#666666"
    assert elements[2].style.text_align == "center"


def test_both_prices_strike_through_the_full_price():
    record = _record("A1", full_price="$120", discounted_price="$90")
    full, discounted = compose_product_text(record, Position(10, 72, 80, 20), name_font_size=20)

    assert full.content == "$120"
    assert full.style.text_decoration == "line-through"
    assert full.style.color == "#999999"
    assert full.position == Position(10, 72, 40, 5)
    assert discounted.content == "$90"
    assert discounted.style.color == "#E53E3E"
    assert discounted.style.font_weight == "bold"
    assert discounted.position == Position(50, 72, 40, 5)


def test_single_discounted_price_is_centered():
    record = _record("A1", discounted_price="$90")
    (price,) = compose_product_text(record, Position(0, 0, 50, 20))

    assert price.content == "$90"
    assert price.data_field == "discounted_price"
    assert price.style.text_align == "center"


def test_discount_badge_sits_inside_the_image_corner():
    records = [_record("img0", discount_percent="25")]
    story = _by_type(compose_layouts(_images(1), records=records))["story"]

    badges = [e for e in story.elements if isinstance(e, BadgeElement)]
    assert len(badges) == 1
    assert badges[0].content == "-25%"
    assert badges[0].position == Position(75, 15, 15, 8)
    assert badges[0].style.background_color == "#E53E3E"
    assert badges[0].style.color == "#FFFFFF"


def test_badge_is_clamped_to_small_image_boxes():
    image_box = Position(2, 2, 10, 6)
    elements = compose_product_text(_record("A1", discount_percent="5%"), Position(2, 8, 10, 3), image_box)

    (badge,) = elements
    assert badge.position == Position(2, 2, 10, 6)


@pytest.mark.parametrize(
    "raw, expected",
    [("20", "-20%"), ("20%", "-20%"), ("-20", "-20%"), (" -15 % ", "-15%"), ("%", None), ("", None)],
)
def test_format_discount(raw, expected):
    assert format_discount(raw) == expected


def test_records_pair_with_images_by_sku():
    records = [
        _record("IMG1", row_index=0, product_name="Second"),
        _record("IMG0", row_index=1, product_name="First"),
    ]
    grid = _by_type(compose_layouts(_images(2), records=records))["grid"]

    names = [e.content for e in grid.elements if isinstance(e, TextElement)]
    assert names == ["First", "Second"]


def test_composition_is_idempotent():
    records = [_record("img1", product_name="Runner", full_price="$10", discounted_price="$8")]
    first = compose_layouts(_images(5), frame=FRAME, icons=ICONS, records=records)
    second = compose_layouts(_images(5), frame=FRAME, icons=ICONS, records=records)

    assert first == second


def test_no_images_is_an_error():
    with pytest.raises(NoDataError):
        compose_layouts([], frame=FRAME)
