"""
Layered trait generation engine.

Modules:
- catalog: layer/trait catalog loading and trait file resolution
- selection: weighted trait draws, DNA fingerprints and the run-scoped uniqueness session
- compositor: layer compositing with a Pillow -> numpy backend fallback chain
- render: static, animated and collection-preview variant rendering
- rarity: batch rarity scoring, yield multipliers and collection statistics
- core: request validation and generation orchestration
- config: JSON request loading
- export: saving a finished run to a local folder
"""

from .catalog import Layer, LayerCatalog, LocalFileResolver, Trait
from .compositor import CompositeOptions, Compositor, LayerEffects, LayerPlacement
from .core import GenerationPipeline, GenerationRequest, GenerationResult, MissingResourcePolicy
from .errors import (
    ConfigurationError,
    EmptyLayerError,
    GenerationError,
    RenderBackendError,
    ResourceNotFound,
    UniquenessExhaustedError,
)
from .models import CollectionStatistics, GeneratedAsset
from .render import VariantSpec

__all__ = [
    "CollectionStatistics",
    "CompositeOptions",
    "Compositor",
    "ConfigurationError",
    "EmptyLayerError",
    "GeneratedAsset",
    "GenerationError",
    "GenerationPipeline",
    "GenerationRequest",
    "GenerationResult",
    "Layer",
    "LayerCatalog",
    "LayerEffects",
    "LayerPlacement",
    "LocalFileResolver",
    "MissingResourcePolicy",
    "RenderBackendError",
    "ResourceNotFound",
    "Trait",
    "UniquenessExhaustedError",
    "VariantSpec",
]
