import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Protocol, Sequence, Tuple

import numpy as np
from PIL import Image, ImageChops, ImageEnhance, ImageFilter

from .errors import ConfigurationError, RenderBackendError


logger = logging.getLogger(__name__)

RGBA = Tuple[int, int, int, int]

BLEND_MODES = (
    "source-over",
    "multiply",
    "screen",
    "overlay",
    "darken",
    "lighten",
    "color-dodge",
    "color-burn",
    "hard-light",
    "soft-light",
    "difference",
    "exclusion",
)


@dataclass
class LayerPlacement:
    """Where a layer lands on the canvas. Unset coordinates center the layer on that axis."""

    x: Optional[int] = None
    y: Optional[int] = None
    scale: float = 1.0
    opacity: Optional[float] = None
    blend: Optional[str] = None


@dataclass
class LayerEffects:
    blur: float = 0.0
    brightness: Optional[float] = None
    contrast: Optional[float] = None


@dataclass
class CompositeOptions:
    canvas_width: int = 512
    canvas_height: int = 512
    background_color: RGBA = (0, 0, 0, 0)
    layer_positions: Dict[str, LayerPlacement] = field(default_factory=dict)
    effects: Dict[str, LayerEffects] = field(default_factory=dict)
    blend: str = "source-over"
    opacity: float = 1.0
    output_format: str = "png"
    quality: int = 95

    @property
    def canvas_size(self) -> Tuple[int, int]:
        return (self.canvas_width, self.canvas_height)

    def placement_for(self, layer_name: str) -> LayerPlacement:
        return self.layer_positions.get(layer_name) or LayerPlacement()

    def blend_for(self, layer_name: str) -> str:
        return self.placement_for(layer_name).blend or self.blend

    def opacity_for(self, layer_name: str) -> float:
        opacity = self.placement_for(layer_name).opacity
        return self.opacity if opacity is None else opacity

    def validate(self) -> None:
        if self.canvas_width <= 0 or self.canvas_height <= 0:
            raise ConfigurationError(
                f"Canvas size must be positive, got {self.canvas_width}x{self.canvas_height}"
            )
        if len(self.background_color) != 4:
            raise ConfigurationError("Background color must be an RGBA tuple")
        if not 0 <= self.opacity <= 1:
            raise ConfigurationError(f"Global opacity must be within [0, 1], got {self.opacity}")

        blends = [self.blend] + [p.blend for p in self.layer_positions.values() if p.blend]
        for blend in blends:
            if blend not in BLEND_MODES:
                raise ConfigurationError(f"Unknown blend mode: {blend!r}")

        for name, placement in self.layer_positions.items():
            for axis in (placement.x, placement.y):
                if axis is not None and (isinstance(axis, bool) or not isinstance(axis, int)):
                    raise ConfigurationError(
                        f"Layer {name!r} position must be whole pixels, got {axis!r}"
                    )
            if placement.scale <= 0:
                raise ConfigurationError(f"Layer {name!r} scale must be positive")
            if placement.opacity is not None and not 0 <= placement.opacity <= 1:
                raise ConfigurationError(f"Layer {name!r} opacity must be within [0, 1]")


@dataclass
class LayerRaster:
    """One decoded trait image, tagged with the layer and trait it came from."""

    layer: str
    trait: str
    image: Image.Image


class RenderBackend(Protocol):
    name: str

    def composite(self, layers: Sequence[LayerRaster], options: CompositeOptions) -> Image.Image:
        ...


def apply_effects(img: Image.Image, effects: Optional[LayerEffects]) -> Image.Image:
    if effects is None:
        return img
    if effects.blur:
        img = img.filter(ImageFilter.GaussianBlur(effects.blur))
    if effects.brightness is not None:
        img = _enhance_rgb(img, ImageEnhance.Brightness, effects.brightness)
    if effects.contrast is not None:
        img = _enhance_rgb(img, ImageEnhance.Contrast, effects.contrast)
    return img


def _enhance_rgb(img: Image.Image, enhancer, factor: float) -> Image.Image:
    # Enhancers act on colour only; the alpha channel is carried over untouched.
    alpha = img.getchannel("A")
    enhanced = enhancer(img.convert("RGB")).enhance(factor).convert("RGBA")
    enhanced.putalpha(alpha)
    return enhanced


def with_opacity(img: Image.Image, opacity: float) -> Image.Image:
    if opacity >= 1:
        return img
    img = img.copy()
    alpha = img.getchannel("A").point(lambda a: int(round(a * opacity)))
    img.putalpha(alpha)
    return img


def prepare_layer(raster: LayerRaster, options: CompositeOptions) -> Image.Image:
    """
    Return a canvas-sized, fully transparent RGBA image holding the layer with
    its effects, scale, position and opacity applied.

    The trait is first fitted inside the canvas (full-canvas placement), then
    scaled by the layer's placement scale.
    """
    canvas_w, canvas_h = options.canvas_size
    placement = options.placement_for(raster.layer)

    img = raster.image.convert("RGBA")
    img = apply_effects(img, options.effects.get(raster.layer))

    fit = min(canvas_w / img.width, canvas_h / img.height) * placement.scale
    width = max(1, int(round(img.width * fit)))
    height = max(1, int(round(img.height * fit)))
    if (width, height) != img.size:
        img = img.resize((width, height), Image.LANCZOS)

    img = with_opacity(img, options.opacity_for(raster.layer))

    x = placement.x if placement.x is not None else (canvas_w - width) // 2
    y = placement.y if placement.y is not None else (canvas_h - height) // 2

    layer = Image.new("RGBA", (canvas_w, canvas_h), (0, 0, 0, 0))
    layer.paste(img, (x, y))
    return layer


_CHOPS_BLENDS: Dict[str, Optional[Callable]] = {
    "source-over": None,
    "multiply": ImageChops.multiply,
    "screen": ImageChops.screen,
    "overlay": ImageChops.overlay,
    "darken": ImageChops.darker,
    "lighten": ImageChops.lighter,
    "hard-light": ImageChops.hard_light,
    "soft-light": ImageChops.soft_light,
    "difference": ImageChops.difference,
}


class PillowBackend:
    """Composite with Pillow's alpha compositing and ImageChops blend operators."""

    name = "pillow"

    def composite(self, layers: Sequence[LayerRaster], options: CompositeOptions) -> Image.Image:
        canvas = Image.new("RGBA", options.canvas_size, tuple(options.background_color))

        for raster in layers:
            blend = options.blend_for(raster.layer)
            if blend not in _CHOPS_BLENDS:
                raise RenderBackendError(self.name, f"Unsupported blend mode: {blend}")

            layer = prepare_layer(raster, options)
            op = _CHOPS_BLENDS[blend]
            if op is not None:
                # Over transparent backdrop pixels the layer keeps its own colour.
                rgb = layer.convert("RGB")
                blended = op(canvas.convert("RGB"), rgb)
                mixed = Image.composite(blended, rgb, canvas.getchannel("A")).convert("RGBA")
                mixed.putalpha(layer.getchannel("A"))
                layer = mixed
            canvas = Image.alpha_composite(canvas, layer)
            logger.debug("Drew layer %s - %s (%s)", raster.layer, raster.trait, blend)

        return canvas


def _soft_light(b: np.ndarray, s: np.ndarray) -> np.ndarray:
    d = np.where(b <= 0.25, ((16 * b - 12) * b + 4) * b, np.sqrt(b))
    return np.where(s <= 0.5, b - (1 - 2 * s) * b * (1 - b), b + (2 * s - 1) * (d - b))


def _hard_light(b: np.ndarray, s: np.ndarray) -> np.ndarray:
    return np.where(s <= 0.5, 2 * b * s, 1 - 2 * (1 - b) * (1 - s))


def _color_dodge(b: np.ndarray, s: np.ndarray) -> np.ndarray:
    with np.errstate(divide="ignore", invalid="ignore"):
        dodged = np.minimum(1.0, b / (1.0 - s))
    return np.where(b == 0, 0.0, np.where(s >= 1, 1.0, dodged))


def _color_burn(b: np.ndarray, s: np.ndarray) -> np.ndarray:
    with np.errstate(divide="ignore", invalid="ignore"):
        burned = 1.0 - np.minimum(1.0, (1.0 - b) / s)
    return np.where(b >= 1, 1.0, np.where(s <= 0, 0.0, burned))


_ARRAY_BLENDS: Dict[str, Callable[[np.ndarray, np.ndarray], np.ndarray]] = {
    "source-over": lambda b, s: s,
    "multiply": lambda b, s: b * s,
    "screen": lambda b, s: 1.0 - (1.0 - b) * (1.0 - s),
    "overlay": lambda b, s: _hard_light(s, b),
    "darken": np.minimum,
    "lighten": np.maximum,
    "color-dodge": _color_dodge,
    "color-burn": _color_burn,
    "hard-light": _hard_light,
    "soft-light": _soft_light,
    "difference": lambda b, s: np.abs(b - s),
    "exclusion": lambda b, s: b + s - 2 * b * s,
}


class NumpyBackend:
    """
    Composite on float arrays with separable blend modes and source-over
    alpha compositing. Covers every mode in BLEND_MODES.
    """

    name = "numpy"

    def composite(self, layers: Sequence[LayerRaster], options: CompositeOptions) -> Image.Image:
        width, height = options.canvas_size
        canvas = np.empty((height, width, 4), dtype=np.float64)
        canvas[...] = np.asarray(options.background_color, dtype=np.float64) / 255.0

        for raster in layers:
            blend = options.blend_for(raster.layer)
            blend_fn = _ARRAY_BLENDS.get(blend)
            if blend_fn is None:
                raise RenderBackendError(self.name, f"Unsupported blend mode: {blend}")

            layer = np.asarray(prepare_layer(raster, options), dtype=np.float64) / 255.0
            src, src_a = layer[..., :3], layer[..., 3:4]
            dst, dst_a = canvas[..., :3], canvas[..., 3:4]

            mixed = (1.0 - dst_a) * src + dst_a * blend_fn(dst, src)
            out_a = src_a + dst_a * (1.0 - src_a)
            with np.errstate(divide="ignore", invalid="ignore"):
                out_c = (src_a * mixed + dst_a * dst * (1.0 - src_a)) / out_a
            out_c = np.where(out_a > 0, out_c, 0.0)

            canvas = np.concatenate([out_c, out_a], axis=-1)
            logger.debug("Drew layer %s - %s (%s)", raster.layer, raster.trait, blend)

        pixels = np.clip(np.rint(canvas * 255.0), 0, 255).astype(np.uint8)
        return Image.fromarray(pixels, "RGBA")


def default_backends() -> List[RenderBackend]:
    return [PillowBackend(), NumpyBackend()]


def available_backends() -> List[str]:
    """Names of the default compositing backends, in the order they are tried."""
    return [backend.name for backend in default_backends()]


class Compositor:
    """
    Flatten a trait stack into one raster.

    Backends are tried in order and the first success wins. When every
    backend fails, the first layer's raster is returned unmodified.
    """

    def __init__(
        self,
        options: Optional[CompositeOptions] = None,
        backends: Optional[Sequence[RenderBackend]] = None,
    ) -> None:
        self.options = options or CompositeOptions()
        self.backends = list(backends) if backends is not None else default_backends()

    @property
    def backend_names(self) -> List[str]:
        return [backend.name for backend in self.backends]

    def composite(self, layers: Sequence[LayerRaster]) -> Image.Image:
        if not layers:
            raise ValueError("No layers to composite")

        logger.debug("Compositing %d layers", len(layers))
        for backend in self.backends:
            try:
                return backend.composite(layers, self.options)
            except RenderBackendError as exc:
                logger.warning("Compositing backend failed, trying next: %s", exc)
            except Exception as exc:
                logger.warning(
                    "Compositing backend %r failed, trying next: %s", backend.name, exc
                )

        logger.error(
            "All compositing backends failed, using layer %r as the final image",
            layers[0].layer,
        )
        return layers[0].image
