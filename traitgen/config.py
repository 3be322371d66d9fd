import json
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .catalog import (
    DEFAULT_RARITY_DELIMITER,
    catalog_from_dicts,
    default_rarity_weights,
    load_catalog_from_directory,
)
from .compositor import CompositeOptions, LayerEffects, LayerPlacement
from .core import GenerationRequest, MissingResourcePolicy
from .errors import ConfigurationError
from .render import VariantSpec, parse_color, standard_variants


def load_request(
    path: Path,
    seed: Optional[int] = None,
    workers: Optional[int] = None,
) -> Tuple[GenerationRequest, List[VariantSpec]]:
    """
    Load a generation request and its variant list from a JSON file.

    Relative layer paths are resolved against the file's folder. `seed` and
    `workers` override the values in the file when given.
    """
    path = Path(path)
    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"Cannot read request file {path}: {exc}") from exc

    return request_from_dict(data, base_dir=path.parent, seed=seed, workers=workers)


def request_from_dict(
    data: Mapping[str, Any],
    base_dir: Optional[Path] = None,
    seed: Optional[int] = None,
    workers: Optional[int] = None,
) -> Tuple[GenerationRequest, List[VariantSpec]]:
    base_dir = base_dir or Path(".")

    if "layers_dir" in data:
        layers_dir = _resolve(base_dir, data["layers_dir"])
        catalog = load_catalog_from_directory(
            layers_dir, data.get("rarity_delimiter", DEFAULT_RARITY_DELIMITER)
        )
    elif "layers" in data:
        entries = []
        for entry in data["layers"]:
            layer_path = entry.get("path") or entry.get("name", "")
            entries.append(dict(entry, path=str(_resolve(base_dir, layer_path))))
        catalog = catalog_from_dicts(entries)
    else:
        raise ConfigurationError("Request needs either 'layers_dir' or 'layers'")

    try:
        batch_size = int(data["batch_size"])
    except KeyError as exc:
        raise ConfigurationError("Request is missing 'batch_size'") from exc
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid batch_size: {data['batch_size']!r}") from exc

    policy_name = data.get("missing_resource_policy", MissingResourcePolicy.LENIENT.value)
    try:
        policy = MissingResourcePolicy(policy_name)
    except ValueError as exc:
        raise ConfigurationError(f"Unknown missing_resource_policy: {policy_name!r}") from exc

    request = GenerationRequest(
        catalog=catalog,
        batch_size=batch_size,
        rarity_weights=data.get("rarity_weights") or default_rarity_weights(catalog),
        composite_options=composite_options_from_dict(data.get("composite") or {}),
        seed=seed if seed is not None else data.get("seed"),
        missing_resource_policy=policy,
        workers=workers if workers is not None else _as_int(data.get("workers", 1), "workers"),
    )

    if "variants" in data:
        variants = [variant_from_dict(entry) for entry in data["variants"]]
    else:
        variants = standard_variants()
    return request, variants


def composite_options_from_dict(data: Mapping[str, Any]) -> CompositeOptions:
    defaults = CompositeOptions()

    background = data.get("background_color", defaults.background_color)
    if isinstance(background, str):
        background = parse_color(background)

    positions: Dict[str, LayerPlacement] = {
        name: LayerPlacement(
            x=_optional_int(entry.get("x"), f"{name}.x"),
            y=_optional_int(entry.get("y"), f"{name}.y"),
            scale=_as_float(entry.get("scale", 1.0), f"{name}.scale"),
            opacity=_optional_float(entry.get("opacity"), f"{name}.opacity"),
            blend=entry.get("blend"),
        )
        for name, entry in (data.get("layer_positions") or {}).items()
    }
    effects: Dict[str, LayerEffects] = {
        name: LayerEffects(
            blur=_as_float(entry.get("blur", 0.0), f"{name}.blur"),
            brightness=_optional_float(entry.get("brightness"), f"{name}.brightness"),
            contrast=_optional_float(entry.get("contrast"), f"{name}.contrast"),
        )
        for name, entry in (data.get("effects") or {}).items()
    }

    return CompositeOptions(
        canvas_width=_as_int(data.get("canvas_width", defaults.canvas_width), "canvas_width"),
        canvas_height=_as_int(data.get("canvas_height", defaults.canvas_height), "canvas_height"),
        background_color=tuple(background),
        layer_positions=positions,
        effects=effects,
        blend=data.get("blend", defaults.blend),
        opacity=_as_float(data.get("opacity", defaults.opacity), "opacity"),
        output_format=data.get("output_format", defaults.output_format),
        quality=_as_int(data.get("quality", defaults.quality), "quality"),
    )


def variant_from_dict(data: Mapping[str, Any]) -> VariantSpec:
    try:
        name = data["name"]
        width, height = data["width"], data["height"]
    except KeyError as exc:
        raise ConfigurationError(f"Variant entry is missing {exc.args[0]!r}") from exc

    return VariantSpec(
        name=name,
        width=_as_int(width, f"{name}.width"),
        height=_as_int(height, f"{name}.height"),
        format=data.get("format", "png"),
        quality=_optional_int(data.get("quality"), f"{name}.quality"),
        animated=bool(data.get("animated", False)),
        frames=_as_int(data.get("frames", 8), f"{name}.frames"),
        delay=_as_int(data.get("delay", 200), f"{name}.delay"),
    )


def _as_int(value: Any, field_name: str) -> int:
    """Whole numbers only; JSON floats such as 10.5 are rounded."""
    if isinstance(value, bool):
        raise ConfigurationError(f"Invalid {field_name}: {value!r}")
    try:
        return int(round(float(value)))
    except (TypeError, ValueError, OverflowError) as exc:
        raise ConfigurationError(f"Invalid {field_name}: {value!r}") from exc


def _as_float(value: Any, field_name: str) -> float:
    if isinstance(value, bool):
        raise ConfigurationError(f"Invalid {field_name}: {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid {field_name}: {value!r}") from exc


def _optional_int(value: Any, field_name: str) -> Optional[int]:
    return None if value is None else _as_int(value, field_name)


def _optional_float(value: Any, field_name: str) -> Optional[float]:
    return None if value is None else _as_float(value, field_name)


def _resolve(base_dir: Path, value: str) -> Path:
    candidate = Path(value)
    return candidate if candidate.is_absolute() else base_dir / candidate
