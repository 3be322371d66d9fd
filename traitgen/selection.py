import hashlib
import logging
import random
from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional, Set, Tuple

from .catalog import Layer, Trait
from .errors import EmptyLayerError, UniquenessExhaustedError


logger = logging.getLogger(__name__)

ATTEMPTS_PER_ASSET = 10


def select_trait(layer: Layer, rng: random.Random) -> Trait:
    """
    Weighted random draw of one trait from `layer`.

    Draws a value in ``[0, total_weight)`` and returns the first trait whose
    running cumulative weight exceeds it, so zero-weight traits are never
    picked while some weight is set. When every weight is zero the draw is
    uniform over the layer's traits.
    """
    if not layer.traits:
        raise EmptyLayerError(layer.name)

    total_weight = sum(trait.weight for trait in layer.traits)
    if total_weight <= 0:
        return rng.choice(layer.traits)

    draw = rng.random() * total_weight
    cumulative = 0.0
    for trait in layer.traits:
        cumulative += trait.weight
        # Strict bound: a zero-weight trait adds an empty interval and is never drawn.
        if draw < cumulative:
            return trait

    # Float rounding can leave the draw just past the final sum.
    for trait in reversed(layer.traits):
        if trait.weight > 0:
            return trait
    return layer.traits[-1]


def selection_probabilities(layer: Layer) -> Dict[str, float]:
    """Normalized probability of drawing each trait of `layer`."""
    if not layer.traits:
        raise EmptyLayerError(layer.name)

    total_weight = sum(trait.weight for trait in layer.traits)
    if total_weight <= 0:
        uniform = 1.0 / len(layer.traits)
        return {trait.name: uniform for trait in layer.traits}
    return {trait.name: trait.weight / total_weight for trait in layer.traits}


def dna_fingerprint(attributes: Iterable[Tuple[str, str]]) -> str:
    """
    Hex sha256 over ``"<layer>:<trait>;"`` for every attribute, in order.
    """
    dna = "".join(f"{layer_name}:{trait_name};" for layer_name, trait_name in attributes)
    return hashlib.sha256(dna.encode("utf-8")).hexdigest()


@dataclass
class GenerationSession:
    """
    Run-scoped draw state: the random source, the accepted fingerprints and
    the attempt budget.

    Only the single draw loop owns a session; compositing and rendering work
    fanned out downstream never touches it.
    """

    requested: int
    rng: random.Random = field(default_factory=random.Random)
    max_attempts: Optional[int] = None
    attempts: int = 0
    fingerprints: Set[str] = field(default_factory=set)

    def __post_init__(self) -> None:
        if self.max_attempts is None:
            self.max_attempts = ATTEMPTS_PER_ASSET * self.requested

    @classmethod
    def seeded(cls, requested: int, seed: Optional[int] = None) -> "GenerationSession":
        return cls(requested=requested, rng=random.Random(seed))

    @property
    def produced(self) -> int:
        return len(self.fingerprints)

    @property
    def complete(self) -> bool:
        return self.produced >= self.requested

    def start_attempt(self) -> int:
        """Count one draw against the budget, failing once it is spent."""
        if self.attempts >= self.max_attempts:
            raise UniquenessExhaustedError(
                produced=self.produced,
                requested=self.requested,
                attempts=self.attempts,
            )
        self.attempts += 1
        return self.attempts

    def is_duplicate(self, dna: str) -> bool:
        return dna in self.fingerprints

    def accept(self, dna: str) -> bool:
        """Record `dna`; returns False (and records nothing) on a repeat."""
        if dna in self.fingerprints:
            logger.debug("Duplicate DNA %s..., discarding draw", dna[:16])
            return False
        self.fingerprints.add(dna)
        return True
