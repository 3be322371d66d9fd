import io
import logging
import random
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from PIL import Image, UnidentifiedImageError

from .catalog import FileResolver, Layer, LayerCatalog, LocalFileResolver, Trait
from .compositor import CompositeOptions, Compositor, LayerRaster, RenderBackend
from .errors import ConfigurationError, EmptyLayerError, ResourceNotFound
from .models import Attribute, CollectionStatistics, GeneratedAsset
from .rarity import collection_statistics, score_batch
from .render import (
    VariantSpec,
    render_animated_variant,
    render_collection_preview,
    render_static_variant,
)
from .selection import GenerationSession, dna_fingerprint, select_trait


logger = logging.getLogger(__name__)


class MissingResourcePolicy(str, Enum):
    """What to do when a drawn trait's source file cannot be read."""

    # Discard the whole draw; it still counts against the attempt budget.
    STRICT = "strict"
    # Drop that one attribute from the asset and record a warning on it.
    LENIENT = "lenient"


@dataclass
class GenerationRequest:
    catalog: LayerCatalog
    batch_size: int
    rarity_weights: Dict[str, Dict[str, float]] = field(default_factory=dict)
    composite_options: Optional[CompositeOptions] = None
    seed: Optional[int] = None
    missing_resource_policy: MissingResourcePolicy = MissingResourcePolicy.LENIENT
    workers: int = 1

    @property
    def options(self) -> CompositeOptions:
        return self.composite_options or CompositeOptions()


@dataclass
class Draw:
    """An accepted, not yet composited selection."""

    token_id: int
    attributes: List[Attribute]
    dna: str
    stack: List[LayerRaster]
    warnings: List[str] = field(default_factory=list)


@dataclass
class GenerationResult:
    assets: List[GeneratedAsset]
    statistics: CollectionStatistics
    attempts: int


class GenerationPipeline:
    """
    Orchestrates a generation run:
    - validate the request before any draw
    - draw (select -> resolve trait files -> DNA -> uniqueness guard) on a single owner
    - composite accepted draws, optionally fanned out over a thread pool
    - score rarity once the whole batch exists
    - render variants and the collection preview on demand
    """

    def __init__(
        self,
        resolver: Optional[FileResolver] = None,
        backends: Optional[Sequence[RenderBackend]] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.resolver = resolver or LocalFileResolver()
        self.backends = backends
        # An injected random source takes precedence over GenerationRequest.seed.
        self.rng = rng

    def validate(self, request: GenerationRequest) -> None:
        catalog = request.catalog

        if request.batch_size <= 0:
            raise ConfigurationError(f"Batch size must be positive, got {request.batch_size}")
        if request.workers < 1:
            raise ConfigurationError(f"Worker count must be at least 1, got {request.workers}")
        if not catalog.layers:
            raise ConfigurationError("At least one layer is required")

        for layer in catalog.layers:
            if not layer.traits:
                raise EmptyLayerError(layer.name)

        total = catalog.total_combinations()
        if request.batch_size > total:
            raise ConfigurationError(
                f"Batch size {request.batch_size} exceeds the {total} possible trait combinations"
            )

        for layer in catalog.layers:
            for trait in layer.traits:
                if trait.weight < 0:
                    raise ConfigurationError(
                        f"Trait {trait.name!r} in layer {layer.name!r} has a negative weight"
                    )
                if not self.resolver.exists(layer.path, trait.filename):
                    raise ConfigurationError(
                        f"Cannot access trait file: {layer.path}/{trait.filename}"
                    )

        request.options.validate()

    def new_session(self, request: GenerationRequest) -> GenerationSession:
        if self.rng is not None:
            return GenerationSession(requested=request.batch_size, rng=self.rng)
        return GenerationSession.seeded(request.batch_size, request.seed)

    def generate(self, request: GenerationRequest) -> GenerationResult:
        self.validate(request)
        session = self.new_session(request)

        logger.info(
            "Generating %d assets from %d layers (%d possible combinations)",
            request.batch_size,
            len(request.catalog),
            request.catalog.total_combinations(),
        )
        draws = list(self.iter_draws(request, session))
        logger.info(
            "Drew %d unique combinations in %d attempts", len(draws), session.attempts
        )

        assets = self.composite_draws(draws, request.options, workers=request.workers)
        score_batch(assets, request.rarity_weights)
        statistics = collection_statistics(assets, request.catalog.total_combinations())

        return GenerationResult(assets=assets, statistics=statistics, attempts=session.attempts)

    def iter_draws(self, request: GenerationRequest, session: GenerationSession) -> Iterator[Draw]:
        """
        Yield accepted draws until the session is complete.

        Raises UniquenessExhaustedError once the attempt budget is spent.
        Callers may stop iterating at any point to cancel the run.
        """
        cache: Dict[Tuple[str, str], Image.Image] = {}
        while not session.complete:
            session.start_attempt()
            draw = self._draw_once(request, session, cache)
            if draw is not None:
                logger.debug("Accepted asset #%d (DNA %s...)", draw.token_id, draw.dna[:16])
                yield draw

    def _draw_once(
        self,
        request: GenerationRequest,
        session: GenerationSession,
        cache: Dict[Tuple[str, str], Image.Image],
    ) -> Optional[Draw]:
        attributes: List[Attribute] = []
        stack: List[LayerRaster] = []
        warnings: List[str] = []

        for layer in request.catalog.layers:
            trait = select_trait(layer, session.rng)
            try:
                image = self._load_trait_image(layer, trait, cache)
            except ResourceNotFound as exc:
                if request.missing_resource_policy == MissingResourcePolicy.STRICT:
                    logger.warning("Discarding draw: %s", exc)
                    return None
                logger.warning("Skipping layer %r for this asset: %s", layer.name, exc)
                warnings.append(f"Skipped layer {layer.name!r}: {exc}")
                continue

            stack.append(LayerRaster(layer=layer.name, trait=trait.name, image=image))
            attributes.append((layer.name, trait.name))

        if not stack:
            logger.warning("Discarding draw: no trait file of the selection could be loaded")
            return None

        dna = dna_fingerprint(attributes)
        if not session.accept(dna):
            return None

        return Draw(
            token_id=session.produced,
            attributes=attributes,
            dna=dna,
            stack=stack,
            warnings=warnings,
        )

    def _load_trait_image(
        self,
        layer: Layer,
        trait: Trait,
        cache: Dict[Tuple[str, str], Image.Image],
    ) -> Image.Image:
        key = (layer.path, trait.filename)
        if key in cache:
            return cache[key]

        data = self.resolver.read(layer.path, trait.filename)
        try:
            image = Image.open(io.BytesIO(data))
            image.load()
        except (UnidentifiedImageError, OSError) as exc:
            raise ResourceNotFound(layer.path, trait.filename, reason=str(exc)) from exc

        image = image.convert("RGBA")
        cache[key] = image
        return image

    def composite_draws(
        self,
        draws: Sequence[Draw],
        options: CompositeOptions,
        workers: int = 1,
    ) -> List[GeneratedAsset]:
        compositor = Compositor(options, backends=self.backends)

        def build(draw: Draw) -> GeneratedAsset:
            return GeneratedAsset(
                token_id=draw.token_id,
                attributes=list(draw.attributes),
                dna=draw.dna,
                raw_composite=compositor.composite(draw.stack),
                warnings=list(draw.warnings),
                stack=list(draw.stack),
            )

        if workers > 1:
            with ThreadPoolExecutor(max_workers=workers) as pool:
                return list(pool.map(build, draws))
        return [build(draw) for draw in draws]

    def render_variants(
        self,
        asset: GeneratedAsset,
        variants: Sequence[VariantSpec],
        options: Optional[CompositeOptions] = None,
    ) -> Dict[str, bytes]:
        """Render every variant of one asset, keyed by variant name."""
        _validate_variants(variants)
        background = (options or CompositeOptions()).background_color
        stack = asset.stack or [
            LayerRaster(layer="composite", trait="composite", image=asset.raw_composite)
        ]

        results: Dict[str, bytes] = {}
        for spec in variants:
            logger.debug(
                "Generating variant %s (%dx%d %s) for asset #%d",
                spec.name,
                spec.width,
                spec.height,
                spec.format,
                asset.token_id,
            )
            if spec.animated:
                results[spec.name] = render_animated_variant(stack, spec, background)
            else:
                results[spec.name] = render_static_variant(asset.raw_composite, spec)
        return results

    def render_all_variants(
        self,
        assets: Sequence[GeneratedAsset],
        variants: Sequence[VariantSpec],
        options: Optional[CompositeOptions] = None,
        workers: int = 1,
    ) -> Dict[int, Dict[str, bytes]]:
        _validate_variants(variants)

        def render(asset: GeneratedAsset) -> Dict[str, bytes]:
            return self.render_variants(asset, variants, options)

        if workers > 1:
            with ThreadPoolExecutor(max_workers=workers) as pool:
                rendered = list(pool.map(render, assets))
        else:
            rendered = [render(asset) for asset in assets]
        return {asset.token_id: buffers for asset, buffers in zip(assets, rendered)}

    def render_collection_preview(
        self,
        assets: Sequence[GeneratedAsset],
        width: int = 256,
        height: int = 256,
        delay: int = 800,
        quality: Optional[int] = None,
        show_index: bool = True,
        options: Optional[CompositeOptions] = None,
    ) -> bytes:
        background = (options or CompositeOptions()).background_color
        return render_collection_preview(
            [asset.raw_composite for asset in assets],
            width=width,
            height=height,
            delay=delay,
            quality=quality,
            show_index=show_index,
            background=background,
        )


def _validate_variants(variants: Sequence[VariantSpec]) -> None:
    names = set()
    for spec in variants:
        spec.validate()
        if spec.name in names:
            raise ConfigurationError(f"Duplicate variant name: {spec.name!r}")
        names.add(spec.name)
