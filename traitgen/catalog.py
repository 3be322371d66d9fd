import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Protocol, Tuple

from .errors import ConfigurationError, ResourceNotFound


logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".gif", ".webp"}

DEFAULT_RARITY_DELIMITER = "#"


@dataclass(frozen=True)
class Trait:
    name: str
    weight: float
    filename: str


@dataclass(frozen=True)
class Layer:
    name: str
    path: str
    traits: Tuple[Trait, ...]

    def find_trait(self, name: str) -> Optional[Trait]:
        for trait in self.traits:
            if trait.name == name:
                return trait
        return None


@dataclass(frozen=True)
class LayerCatalog:
    layers: Tuple[Layer, ...]

    def __iter__(self):
        return iter(self.layers)

    def __len__(self) -> int:
        return len(self.layers)

    @property
    def layer_names(self) -> List[str]:
        return [layer.name for layer in self.layers]

    def get_layer(self, name: str) -> Optional[Layer]:
        for layer in self.layers:
            if layer.name == name:
                return layer
        return None

    def total_combinations(self) -> int:
        total = 1
        for layer in self.layers:
            total *= len(layer.traits)
        return total


class FileResolver(Protocol):
    """Maps ``(layer path, trait filename)`` to raw image bytes."""

    def exists(self, layer_path: str, filename: str) -> bool:
        ...

    def read(self, layer_path: str, filename: str) -> bytes:
        ...


class LocalFileResolver:
    """
    Resolve trait files from the local filesystem.

    Relative layer paths are resolved against `root` when one is given,
    otherwise against the current working directory.
    """

    def __init__(self, root: Optional[Path] = None) -> None:
        self.root = root

    def _path_for(self, layer_path: str, filename: str) -> Path:
        base = Path(layer_path)
        if self.root is not None and not base.is_absolute():
            base = self.root / base
        return base / filename

    def exists(self, layer_path: str, filename: str) -> bool:
        return self._path_for(layer_path, filename).is_file()

    def read(self, layer_path: str, filename: str) -> bytes:
        path = self._path_for(layer_path, filename)
        try:
            return path.read_bytes()
        except OSError as exc:
            raise ResourceNotFound(layer_path, filename, reason=exc.strerror) from exc


def parse_trait_filename(
    filename: str, delimiter: str = DEFAULT_RARITY_DELIMITER
) -> Tuple[str, float]:
    """
    Split a filename like ``Gold Eyes#70.png`` into its trait name and weight.

    Files without the delimiter get weight 1. Unparseable or non-positive
    weights are logged and also fall back to 1.
    """
    stem = Path(filename).stem
    if delimiter not in stem:
        return stem, 1

    name, _, weight_str = stem.partition(delimiter)
    name = name.strip()
    weight_str = weight_str.strip()
    try:
        weight = int(weight_str)
    except ValueError:
        logger.warning("Invalid weight %r for trait %r, using default weight 1", weight_str, name)
        return name, 1

    if weight <= 0:
        logger.warning("Invalid weight %r for trait %r, using default weight 1", weight_str, name)
        return name, 1
    return name, weight


def load_catalog_from_directory(
    base_path: Path,
    delimiter: str = DEFAULT_RARITY_DELIMITER,
) -> LayerCatalog:
    """
    Build a catalog from a layers folder.

    Every sub-directory (sorted by name) is a layer, every image file inside
    it (sorted by name) is a trait. Layers without any image files are
    skipped.
    """
    base_path = Path(base_path)
    if not base_path.is_dir():
        raise ConfigurationError(f"Layers directory does not exist: {base_path}")

    layer_dirs = sorted(p for p in base_path.iterdir() if p.is_dir())
    logger.info("Found %d layer directories in %s", len(layer_dirs), base_path)

    layers: List[Layer] = []
    for layer_dir in layer_dirs:
        trait_files = sorted(
            p.name
            for p in layer_dir.iterdir()
            if p.is_file() and p.suffix.lower() in IMAGE_EXTENSIONS
        )
        traits = []
        for filename in trait_files:
            name, weight = parse_trait_filename(filename, delimiter)
            traits.append(Trait(name=name, weight=weight, filename=filename))
            logger.debug("Added trait %s/%s (weight: %s)", layer_dir.name, name, weight)

        if not traits:
            logger.warning("Skipping layer %r: no trait images found", layer_dir.name)
            continue

        layers.append(Layer(name=layer_dir.name, path=str(layer_dir), traits=tuple(traits)))

    logger.info("Loaded %d layers", len(layers))
    return LayerCatalog(layers=tuple(layers))


def catalog_from_dicts(entries: Iterable[Mapping]) -> LayerCatalog:
    """
    Build a catalog from explicit layer specs::

        {"name": "eyes", "path": "layers/eyes",
         "traits": [{"name": "Gold", "weight": 70, "filename": "gold.png"}]}
    """
    layers = []
    for entry in entries:
        try:
            name = entry["name"]
            path = entry["path"]
        except KeyError as exc:
            raise ConfigurationError(f"Layer entry is missing {exc.args[0]!r}") from exc

        traits = []
        for trait in entry.get("traits", []):
            weight = float(trait.get("weight", 1))
            if weight < 0:
                raise ConfigurationError(
                    f"Trait {trait.get('name')!r} in layer {name!r} has a negative weight"
                )
            traits.append(
                Trait(
                    name=str(trait["name"]),
                    weight=weight,
                    filename=trait.get("filename") or f"{trait['name']}.png",
                )
            )
        layers.append(Layer(name=name, path=str(path), traits=tuple(traits)))
    return LayerCatalog(layers=tuple(layers))


def default_rarity_weights(catalog: LayerCatalog) -> Dict[str, Dict[str, float]]:
    """Rarity table that mirrors the selection weights of every trait."""
    return {
        layer.name: {trait.name: trait.weight for trait in layer.traits}
        for layer in catalog.layers
    }
