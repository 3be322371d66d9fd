"""Tests for variant rendering, animated GIFs and the collection preview."""

from __future__ import annotations

import io

import pytest
from PIL import Image, ImageSequence

from tests.helpers import solid
from traitgen.compositor import LayerRaster
from traitgen.errors import ConfigurationError
from traitgen.render import (
    VariantSpec,
    encode_image,
    frame_effect,
    parse_color,
    render_animated_variant,
    render_collection_preview,
    render_static_variant,
    resize_contain,
    resize_cover,
    standard_variants,
)


def decode(data: bytes) -> Image.Image:
    img = Image.open(io.BytesIO(data))
    img.load()
    return img


def frame_durations(data: bytes) -> list:
    img = Image.open(io.BytesIO(data))
    return [frame.info["duration"] for frame in ImageSequence.Iterator(img)]


def split_image() -> Image.Image:
    """20x10 image: red on the left half, blue on the right."""
    img = Image.new("RGBA", (20, 10), (255, 0, 0, 255))
    img.paste(Image.new("RGBA", (10, 10), (0, 0, 255, 255)), (10, 0))
    return img


@pytest.fixture
def stack() -> list:
    body = Image.new("RGBA", (64, 64), (0, 0, 0, 0))
    body.paste(Image.new("RGBA", (40, 20), (220, 40, 40, 255)), (4, 30))
    eyes = Image.new("RGBA", (64, 64), (0, 0, 0, 0))
    eyes.paste(Image.new("RGBA", (10, 6), (250, 250, 20, 255)), (40, 10))
    return [
        LayerRaster(layer="body", trait="Red", image=body),
        LayerRaster(layer="eyes", trait="Yellow", image=eyes),
    ]


def test_resize_cover_crops_to_center() -> None:
    result = resize_cover(split_image(), 10, 10)
    assert result.size == (10, 10)
    assert result.getpixel((0, 5)) == (255, 0, 0, 255)
    assert result.getpixel((9, 5)) == (0, 0, 255, 255)


def test_resize_contain_letterboxes() -> None:
    result = resize_contain(split_image(), 10, 10, (0, 0, 0, 0))
    assert result.size == (10, 10)
    assert result.getpixel((5, 0))[3] == 0
    assert result.getpixel((5, 5))[3] == 255


@pytest.mark.parametrize(
    ("fmt", "pil_format"),
    [("png", "PNG"), ("jpeg", "JPEG"), ("webp", "WEBP"), ("gif", "GIF")],
)
def test_static_variant_formats(fmt: str, pil_format: str) -> None:
    spec = VariantSpec(name=fmt, width=24, height=16, format=fmt)
    img = decode(render_static_variant(split_image(), spec))
    assert img.format == pil_format
    assert img.size == (24, 16)


def test_png_variant_keeps_transparency() -> None:
    composite = Image.new("RGBA", (16, 16), (0, 0, 0, 0))
    spec = VariantSpec(name="original", width=8, height=8, format="png")
    img = decode(render_static_variant(composite, spec)).convert("RGBA")
    assert img.getpixel((4, 4))[3] == 0


def test_gif_quality_limits_palette() -> None:
    gradient = Image.new("RGB", (64, 64))
    gradient.putdata([(x * 4, y * 4, (x + y) * 2) for y in range(64) for x in range(64)])
    img = decode(encode_image(gradient, "gif", quality=10)).convert("RGB")
    colors = img.getcolors(maxcolors=256)
    assert colors is not None
    assert len(colors) <= 26


def test_encode_image_unknown_format() -> None:
    with pytest.raises(ConfigurationError):
        encode_image(solid((1, 2, 3, 255)), "tiff")


def test_frame_effect_at_start_of_cycle() -> None:
    effect = frame_effect(0, 8)
    assert effect.rotate == pytest.approx(0.0)
    assert effect.scale == pytest.approx(1.05)
    assert effect.opacity == pytest.approx(0.9)


def test_frame_effect_stays_subtle() -> None:
    for i in range(12):
        effect = frame_effect(i, 12)
        assert abs(effect.rotate) <= 0.1 + 1e-9
        assert 0.95 - 1e-9 <= effect.scale <= 1.05 + 1e-9
        assert 0.8 - 1e-9 <= effect.opacity <= 1.0 + 1e-9


def test_animated_variant_frames_and_duration(stack: list) -> None:
    spec = VariantSpec(
        name="gif_thumbnail", width=64, height=64, format="gif", animated=True, frames=4, delay=150
    )
    data = render_animated_variant(stack, spec)

    img = decode(data)
    assert img.format == "GIF"
    assert img.size == (64, 64)
    assert img.n_frames == 4
    assert sum(frame_durations(data)) == 4 * 150


def test_animated_variant_needs_layers() -> None:
    spec = VariantSpec(name="anim", width=64, height=64, format="gif", animated=True)
    with pytest.raises(ConfigurationError):
        render_animated_variant([], spec)


def test_collection_preview_one_frame_per_asset() -> None:
    composites = [
        solid((255, 0, 0, 255), (64, 64)),
        solid((0, 255, 0, 255), (64, 64)),
        solid((0, 0, 255, 255), (64, 64)),
    ]
    data = render_collection_preview(composites, width=96, height=96, delay=800)

    img = decode(data)
    assert img.size == (96, 96)
    assert img.n_frames == 3
    assert frame_durations(data) == [800, 800, 800]


def test_collection_preview_requires_assets() -> None:
    with pytest.raises(ConfigurationError):
        render_collection_preview([])


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("#FF0000", (255, 0, 0, 255)),
        ("00ff00", (0, 255, 0, 255)),
        ("#0000FF80", (0, 0, 255, 128)),
    ],
)
def test_parse_color(value: str, expected: tuple) -> None:
    assert parse_color(value) == expected


@pytest.mark.parametrize("value", ["#FFF", "#GGGGGG", ""])
def test_parse_color_invalid(value: str) -> None:
    with pytest.raises(ConfigurationError):
        parse_color(value)


@pytest.mark.parametrize(
    "spec",
    [
        VariantSpec(name="zero", width=0, height=10),
        VariantSpec(name="bmp", width=10, height=10, format="bmp"),
        VariantSpec(name="anim-png", width=10, height=10, format="png", animated=True),
        VariantSpec(name="no-frames", width=10, height=10, format="gif", animated=True, frames=0),
        VariantSpec(name="no-delay", width=10, height=10, format="gif", animated=True, delay=0),
    ],
)
def test_variant_spec_validation(spec: VariantSpec) -> None:
    with pytest.raises(ConfigurationError):
        spec.validate()


def test_standard_variants_are_valid() -> None:
    variants = standard_variants()
    assert [v.name for v in variants] == [
        "original",
        "large",
        "medium",
        "thumbnail",
        "gif_thumbnail",
        "preview",
    ]
    for variant in variants:
        variant.validate()
    assert variants[-1].extension == "jpg"


def test_animated_variant_keeps_every_frame_of_static_stack() -> None:
    """A stack that looks the same on every frame still yields `frames` frames."""
    blank = Image.new("RGBA", (32, 32), (0, 0, 0, 0))
    stack = [LayerRaster(layer="bg", trait="None", image=blank)]
    spec = VariantSpec(
        name="gif_thumbnail", width=32, height=32, format="gif", animated=True, frames=8, delay=100
    )

    data = render_animated_variant(stack, spec)

    assert decode(data).n_frames == 8
    assert frame_durations(data) == [100] * 8


@pytest.mark.parametrize("count", [2, 3])
def test_collection_preview_keeps_identical_composites(count: int) -> None:
    composites = [solid((40, 80, 120, 255), (32, 32)) for _ in range(count)]
    data = render_collection_preview(composites, width=32, height=32, delay=500, show_index=False)
    assert decode(data).n_frames == count
    assert sum(frame_durations(data)) == count * 500
