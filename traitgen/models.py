import io
from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple

from PIL import Image

from .compositor import LayerRaster


Attribute = Tuple[str, str]


@dataclass
class GeneratedAsset:
    token_id: int
    attributes: List[Attribute]
    dna: str
    raw_composite: Image.Image
    rarity_score: float = 0.0
    yield_multiplier: float = 1.0
    # Lenient-mode notes, e.g. attributes skipped because their file was unreadable.
    warnings: List[str] = field(default_factory=list)
    stack: List[LayerRaster] = field(default_factory=list, repr=False)

    def to_png_bytes(self) -> bytes:
        buffer = io.BytesIO()
        self.raw_composite.save(buffer, format="PNG")
        return buffer.getvalue()

    def to_metadata(self) -> Dict[str, Any]:
        return {
            "token_id": self.token_id,
            "dna": self.dna,
            "rarity_score": self.rarity_score,
            "yield_multiplier": self.yield_multiplier,
            "attributes": [
                {"trait_type": layer_name, "value": trait_name}
                for layer_name, trait_name in self.attributes
            ],
            "warnings": list(self.warnings),
        }


@dataclass
class CollectionStatistics:
    total_combinations: int
    actual_generated: int
    rarity_histogram: Dict[str, int]
    average_rarity_score: float = 0.0
    average_yield_multiplier: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_combinations": self.total_combinations,
            "actual_generated": self.actual_generated,
            "rarity_histogram": dict(self.rarity_histogram),
            "average_rarity_score": self.average_rarity_score,
            "average_yield_multiplier": self.average_yield_multiplier,
        }
