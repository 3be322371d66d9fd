import io
import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from PIL import Image, ImageDraw, ImageFont

from .compositor import RGBA, LayerRaster, with_opacity
from .errors import ConfigurationError


logger = logging.getLogger(__name__)

STATIC_FORMATS = {"png", "jpeg", "webp", "gif"}

DEFAULT_QUALITY: Dict[str, int] = {
    "png": 95,
    "jpeg": 90,
    "webp": 85,
    "gif": 80,
}

FILE_EXTENSIONS: Dict[str, str] = {
    "png": "png",
    "jpeg": "jpg",
    "webp": "webp",
    "gif": "gif",
}

# Animated frames draw the trait stack at this share of the frame so the
# rotation and scale pulse stay inside it.
ANIMATION_FIT = 0.8


@dataclass
class VariantSpec:
    name: str
    width: int
    height: int
    format: str = "png"
    quality: Optional[int] = None
    animated: bool = False
    frames: int = 8
    delay: int = 200

    @property
    def extension(self) -> str:
        return FILE_EXTENSIONS[self.format]

    def validate(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ConfigurationError(f"Variant {self.name!r} must have a positive size")
        if self.format not in STATIC_FORMATS:
            raise ConfigurationError(f"Variant {self.name!r} has unknown format {self.format!r}")
        if self.animated:
            if self.format != "gif":
                raise ConfigurationError(f"Animated variant {self.name!r} must use the gif format")
            if self.frames < 1:
                raise ConfigurationError(f"Animated variant {self.name!r} needs at least one frame")
            if self.delay <= 0:
                raise ConfigurationError(f"Animated variant {self.name!r} needs a positive delay")


@dataclass
class FrameEffect:
    rotate: float
    scale: float
    opacity: float


def standard_variants() -> List[VariantSpec]:
    return [
        VariantSpec(name="original", width=512, height=512, format="png", quality=95),
        VariantSpec(name="large", width=256, height=256, format="png", quality=90),
        VariantSpec(name="medium", width=128, height=128, format="webp", quality=85),
        VariantSpec(name="thumbnail", width=64, height=64, format="webp", quality=80),
        VariantSpec(
            name="gif_thumbnail",
            width=128,
            height=128,
            format="gif",
            animated=True,
            frames=8,
            delay=200,
        ),
        VariantSpec(name="preview", width=32, height=32, format="jpeg", quality=75),
    ]


def resize_cover(img: Image.Image, width: int, height: int) -> Image.Image:
    """
    Resize + crop to exactly `width` x `height` while filling the frame.
    """
    scale = max(width / img.width, height / img.height)
    resized_w = max(width, int(math.ceil(img.width * scale)))
    resized_h = max(height, int(math.ceil(img.height * scale)))
    img = img.resize((resized_w, resized_h), Image.LANCZOS)

    left = (resized_w - width) // 2
    top = (resized_h - height) // 2
    return img.crop((left, top, left + width, top + height))


def resize_contain(img: Image.Image, width: int, height: int, background: RGBA) -> Image.Image:
    """Fit `img` inside the frame, centered on a `background` canvas."""
    img = img.convert("RGBA")
    scale = min(width / img.width, height / img.height)
    fitted = img.resize(
        (max(1, int(img.width * scale)), max(1, int(img.height * scale))),
        Image.LANCZOS,
    )
    canvas = Image.new("RGBA", (width, height), tuple(background))
    x = (width - fitted.width) // 2
    y = (height - fitted.height) // 2
    canvas.alpha_composite(fitted, (x, y))
    return canvas


def encode_image(img: Image.Image, fmt: str, quality: Optional[int] = None) -> bytes:
    quality = quality or DEFAULT_QUALITY[fmt]
    buffer = io.BytesIO()
    if fmt == "png":
        img.convert("RGBA").save(buffer, format="PNG", compress_level=6)
    elif fmt == "jpeg":
        _flatten(img).save(buffer, format="JPEG", quality=quality, progressive=True)
    elif fmt == "webp":
        img.convert("RGBA").save(buffer, format="WEBP", quality=quality, method=4)
    elif fmt == "gif":
        _to_palette(_flatten(img), quality).save(buffer, format="GIF")
    else:
        raise ConfigurationError(f"Unknown output format: {fmt!r}")
    return buffer.getvalue()


def render_static_variant(composite: Image.Image, spec: VariantSpec) -> bytes:
    resized = resize_cover(composite.convert("RGBA"), spec.width, spec.height)
    return encode_image(resized, spec.format, spec.quality)


def frame_effect(frame: int, total_frames: int) -> FrameEffect:
    """
    Subtle periodic perturbation for frame `frame` of `total_frames`.

    The scale pulse runs on the cosine so that two consecutive frames never
    share the same geometry.
    """
    phase = 2 * math.pi * frame / total_frames
    return FrameEffect(
        rotate=math.sin(phase) * 0.1,
        scale=1 + math.cos(phase) * 0.05,
        opacity=0.9 + math.sin(phase) * 0.1,
    )


def render_animation_frame(
    stack: Sequence[LayerRaster],
    width: int,
    height: int,
    effect: FrameEffect,
    background: RGBA = (0, 0, 0, 0),
) -> Image.Image:
    frame = Image.new("RGBA", (width, height), tuple(background))
    for raster in stack:
        img = raster.image.convert("RGBA")
        fit = min(width / img.width, height / img.height) * ANIMATION_FIT * effect.scale
        img = img.resize(
            (max(1, int(round(img.width * fit))), max(1, int(round(img.height * fit)))),
            Image.LANCZOS,
        )
        img = img.rotate(math.degrees(effect.rotate), resample=Image.BICUBIC, expand=True)
        img = with_opacity(img, min(1.0, effect.opacity))

        layer = Image.new("RGBA", (width, height), (0, 0, 0, 0))
        layer.paste(img, ((width - img.width) // 2, (height - img.height) // 2))
        frame = Image.alpha_composite(frame, layer)
    return frame


def render_animated_variant(
    stack: Sequence[LayerRaster],
    spec: VariantSpec,
    background: RGBA = (0, 0, 0, 0),
) -> bytes:
    """Re-render the trait stack `spec.frames` times and encode a looping GIF."""
    if not stack:
        raise ConfigurationError(f"Animated variant {spec.name!r} needs at least one layer")

    logger.debug("Creating animated GIF with %d frames", spec.frames)
    frames = [
        render_animation_frame(
            stack, spec.width, spec.height, frame_effect(i, spec.frames), background
        )
        for i in range(spec.frames)
    ]
    return encode_animation(frames, delay=spec.delay, quality=spec.quality, background=background)


def encode_animation(
    frames: Sequence[Image.Image],
    delay: int,
    quality: Optional[int] = None,
    loop: int = 0,
    background: RGBA = (0, 0, 0, 0),
) -> bytes:
    quality = quality or DEFAULT_QUALITY["gif"]
    palette_frames = [
        _mark_frame(_to_palette(_flatten(frame, background), quality, reserve=1), i)
        for i, frame in enumerate(frames)
    ]

    buffer = io.BytesIO()
    first, rest = palette_frames[0], palette_frames[1:]
    first.save(
        buffer,
        format="GIF",
        save_all=True,
        append_images=rest,
        duration=delay,
        loop=loop,
        optimize=False,
        disposal=2,
    )
    return buffer.getvalue()


def render_collection_preview(
    composites: Sequence[Image.Image],
    width: int = 256,
    height: int = 256,
    delay: int = 800,
    quality: Optional[int] = None,
    loop: int = 0,
    show_index: bool = True,
    background: RGBA = (0, 0, 0, 0),
    font_path: Optional[str] = None,
) -> bytes:
    """
    Looping GIF that shows one asset per frame across the whole batch,
    optionally stamped with its ``#n`` ordinal.
    """
    if not composites:
        raise ConfigurationError("Collection preview needs at least one asset")

    logger.info("Creating collection preview with %d frames", len(composites))
    frames = []
    for index, composite in enumerate(composites, start=1):
        frame = resize_contain(composite, width, height, background)
        if show_index:
            frame = overlay_index(frame, index, font_path=font_path)
        frames.append(frame)
    return encode_animation(frames, delay=delay, quality=quality, loop=loop, background=background)


def overlay_index(img: Image.Image, index: int, font_path: Optional[str] = None) -> Image.Image:
    """Stamp ``#index`` in a dark pill at the top-left corner."""
    img = img.convert("RGBA")
    w, h = img.size
    label = f"#{index}"

    font = _load_font(font_path, size=max(8, int(min(w, h) * 0.0625)))
    margin = max(2, int(min(w, h) * 0.04))
    padding = max(2, margin // 2)

    overlay = Image.new("RGBA", (w, h), (0, 0, 0, 0))
    draw = ImageDraw.Draw(overlay)
    text_w = draw.textlength(label, font=font)
    text_h = font.getbbox(label)[3]
    draw.rectangle(
        [margin, margin, margin + int(text_w) + 2 * padding, margin + text_h + 2 * padding],
        fill=(0, 0, 0, 178),
    )
    draw.text((margin + padding, margin + padding), label, font=font, fill=(255, 255, 255, 255))
    return Image.alpha_composite(img, overlay)


def _flatten(img: Image.Image, background: RGBA = (0, 0, 0, 0)) -> Image.Image:
    """Drop alpha by compositing onto an opaque version of `background`."""
    img = img.convert("RGBA")
    base = Image.new("RGBA", img.size, tuple(background[:3]) + (255,))
    return Image.alpha_composite(base, img).convert("RGB")


def _to_palette(img: Image.Image, quality: int, reserve: int = 0) -> Image.Image:
    """Quantize to a GIF palette; higher quality keeps more colours.

    `reserve` palette slots are left free for the caller.
    """
    colors = max(2, min(256 - reserve, int(round(256 * quality / 100))))
    return img.quantize(colors=colors)


def _mark_frame(frame: Image.Image, index: int) -> Image.Image:
    """
    Nudge pixel (0, 0) of every odd frame by one blue level.

    Pillow drops a GIF frame that is identical to the one before it and adds
    its duration to the previous frame, so static stacks and identical
    composites would otherwise lose frames.
    """
    if index % 2 == 0:
        return frame

    frame = frame.copy()
    palette = list(frame.getpalette() or [])
    current = frame.getpixel((0, 0))
    r, g, b = (palette[3 * current:3 * current + 3] + [0, 0, 0])[:3]

    # First slot past every index the quantized frame uses.
    slot = frame.getextrema()[1] + 1
    if len(palette) < 3 * (slot + 1):
        palette.extend([0] * (3 * (slot + 1) - len(palette)))
    palette[3 * slot:3 * slot + 3] = [r, g, b ^ 1]

    frame.putpalette(palette)
    frame.putpixel((0, 0), slot)
    return frame


def parse_color(color_str: str) -> RGBA:
    """
    Parse hex color strings like '#FF0000', 'FF0000' or '#FF000080' into an RGBA tuple.
    """
    s = color_str.strip().lstrip("#")
    if len(s) not in (6, 8):
        raise ConfigurationError(f"Invalid color: {color_str!r}")
    try:
        channels = [int(s[i:i + 2], 16) for i in range(0, len(s), 2)]
    except ValueError as exc:
        raise ConfigurationError(f"Invalid color: {color_str!r}") from exc
    if len(channels) == 3:
        channels.append(255)
    return tuple(channels)


def _load_font(font_path: Optional[str], size: int) -> ImageFont.ImageFont:
    """
    Load a TrueType font, falling back to common system fonts and finally
    Pillow's bundled default.
    """
    candidates: List[str] = []
    if font_path:
        candidates.append(font_path)
    candidates.extend(
        [
            "/System/Library/Fonts/Helvetica.ttc",
            "/Library/Fonts/Arial.ttf",
            "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
            "/usr/share/fonts/truetype/liberation/LiberationSans-Bold.ttf",
            "C:/Windows/Fonts/arialbd.ttf",
        ]
    )

    for candidate in candidates:
        if not Path(candidate).exists():
            continue
        try:
            return ImageFont.truetype(candidate, size=size)
        except OSError as exc:
            logger.debug("Could not load font %s: %s", candidate, exc)

    return ImageFont.load_default()
