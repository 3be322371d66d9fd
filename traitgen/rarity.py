import math
from collections import Counter
from typing import Dict, Iterable, Mapping, Sequence

from .models import Attribute, CollectionStatistics, GeneratedAsset


RarityWeights = Mapping[str, Mapping[str, float]]

HISTOGRAM_BUCKET = 10


def trait_occurrences(assets: Iterable[GeneratedAsset]) -> Counter:
    """Count how many assets carry each ``(layer, trait)`` pair."""
    counts: Counter = Counter()
    for asset in assets:
        counts.update(asset.attributes)
    return counts


def rarity_score(
    attributes: Sequence[Attribute], counts: Mapping[Attribute, int], batch_size: int
) -> float:
    score = sum(batch_size / counts[attribute] for attribute in attributes)
    return round(score, 2)


def yield_multiplier(attributes: Sequence[Attribute], rarity_weights: RarityWeights) -> float:
    """
    Product of ``1 + 1/weight`` over every attribute with a configured,
    non-zero rarity weight. A descriptive signal only.
    """
    multiplier = 1.0
    for layer_name, trait_name in attributes:
        weight = rarity_weights.get(layer_name, {}).get(trait_name)
        if weight:
            multiplier *= 1 + 1 / weight
    return round(multiplier, 2)


def score_batch(assets: Sequence[GeneratedAsset], rarity_weights: RarityWeights) -> None:
    """Fill in `rarity_score` and `yield_multiplier` on every asset of a finished batch."""
    counts = trait_occurrences(assets)
    batch_size = len(assets)
    for asset in assets:
        asset.rarity_score = rarity_score(asset.attributes, counts, batch_size)
        asset.yield_multiplier = yield_multiplier(asset.attributes, rarity_weights)


def rarity_histogram(scores: Iterable[float], bucket: int = HISTOGRAM_BUCKET) -> Dict[str, int]:
    histogram: Dict[str, int] = {}
    for score in scores:
        low = int(math.floor(score / bucket)) * bucket
        key = f"{low}-{low + bucket - 1}"
        histogram[key] = histogram.get(key, 0) + 1
    return dict(sorted(histogram.items(), key=lambda item: int(item[0].split("-")[0])))


def collection_statistics(
    assets: Sequence[GeneratedAsset], total_combinations: int
) -> CollectionStatistics:
    count = len(assets)
    if count:
        average_score = round(sum(a.rarity_score for a in assets) / count, 2)
        average_yield = round(sum(a.yield_multiplier for a in assets) / count, 2)
    else:
        average_score = average_yield = 0.0

    return CollectionStatistics(
        total_combinations=total_combinations,
        actual_generated=count,
        rarity_histogram=rarity_histogram(a.rarity_score for a in assets),
        average_rarity_score=average_score,
        average_yield_multiplier=average_yield,
    )
