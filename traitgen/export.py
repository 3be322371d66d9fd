import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence

from .catalog import LayerCatalog
from .core import GenerationResult
from .render import VariantSpec
from .selection import selection_probabilities


logger = logging.getLogger(__name__)

PREVIEW_FILENAME = "collection-preview.gif"
SUMMARY_FILENAME = "collection-summary.json"


def write_collection(
    result: GenerationResult,
    catalog: LayerCatalog,
    variants: Sequence[VariantSpec],
    variant_buffers: Mapping[int, Mapping[str, bytes]],
    output_root: Path,
    preview: Optional[bytes] = None,
) -> Path:
    """
    Save a finished run under `output_root`:
    - nft-{token_id}/{variant}.{ext} and nft-{token_id}/metadata.json per asset
    - collection-preview.gif when a preview was rendered
    - collection-summary.json with statistics, layer weights and per-asset rarity
    """
    output_root.mkdir(parents=True, exist_ok=True)
    extensions = {spec.name: spec.extension for spec in variants}

    for asset in result.assets:
        asset_dir = output_root / f"nft-{asset.token_id}"
        asset_dir.mkdir(parents=True, exist_ok=True)

        buffers = variant_buffers.get(asset.token_id, {})
        for name, buffer in buffers.items():
            (asset_dir / f"{name}.{extensions.get(name, 'png')}").write_bytes(buffer)

        metadata = asset.to_metadata()
        metadata["files"] = {name: f"{name}.{extensions.get(name, 'png')}" for name in buffers}
        _write_json(asset_dir / "metadata.json", metadata)
        logger.debug("Saved asset #%d to %s", asset.token_id, asset_dir)

    if preview is not None:
        (output_root / PREVIEW_FILENAME).write_bytes(preview)

    summary_path = output_root / SUMMARY_FILENAME
    _write_json(summary_path, build_summary(result, catalog, has_preview=preview is not None))
    logger.info("Saved %d assets to %s", len(result.assets), output_root)
    return summary_path


def build_summary(
    result: GenerationResult, catalog: LayerCatalog, has_preview: bool = False
) -> Dict[str, Any]:
    stats = result.statistics
    return {
        "collection": {
            "total_supply": stats.actual_generated,
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "attempts": result.attempts,
            "collection_preview": PREVIEW_FILENAME if has_preview else None,
        },
        "statistics": stats.to_dict(),
        "layers": [
            {
                "name": layer.name,
                "trait_count": len(layer.traits),
                "traits": [
                    {
                        "name": trait.name,
                        "weight": trait.weight,
                        "probability": round(probabilities[trait.name], 4),
                    }
                    for trait in layer.traits
                ],
            }
            for layer, probabilities in _layers_with_probabilities(catalog)
        ],
        "assets": [
            {
                "token_id": asset.token_id,
                "dna": asset.dna,
                "rarity_score": asset.rarity_score,
                "yield_multiplier": asset.yield_multiplier,
                "attributes": [list(attribute) for attribute in asset.attributes],
            }
            for asset in result.assets
        ],
    }


def _layers_with_probabilities(catalog: LayerCatalog):
    for layer in catalog.layers:
        yield layer, selection_probabilities(layer)


def _write_json(path: Path, payload: Any) -> None:
    with path.open("w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2, ensure_ascii=False)
