import argparse
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from traitgen.catalog import (
    DEFAULT_RARITY_DELIMITER,
    default_rarity_weights,
    load_catalog_from_directory,
)
from traitgen.config import load_request
from traitgen.core import GenerationPipeline, GenerationRequest, MissingResourcePolicy
from traitgen.errors import GenerationError
from traitgen.export import write_collection
from traitgen.log import configure_logging
from traitgen.render import standard_variants


logger = logging.getLogger("traitgen")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Generate a batch of unique layered assets from a trait library."
    )
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument(
        "--request",
        type=Path,
        help="Path to a generation request JSON file.",
    )
    source.add_argument(
        "--layers-dir",
        type=Path,
        help="Folder with one sub-folder per layer and `name#weight.png` trait files.",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        help="Number of unique assets to generate (required with --layers-dir).",
    )
    parser.add_argument(
        "--output-root",
        type=Path,
        default=Path("generated"),
        help="Root folder where generated assets will be stored.",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=_env_int("TRAITGEN_SEED"),
        help="Seed for reproducible trait draws.",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=_env_int("TRAITGEN_WORKERS"),
        help="Threads used for compositing and variant rendering.",
    )
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Discard a draw when any of its trait files cannot be read.",
    )
    parser.add_argument(
        "--no-preview",
        action="store_true",
        help="Skip the collection preview GIF.",
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("TRAITGEN_LOG_LEVEL", "INFO"),
        help="Logging level (DEBUG, INFO, WARNING, ...).",
    )
    args = parser.parse_args(argv)
    if args.layers_dir is not None and args.batch_size is None:
        parser.error("--batch-size is required with --layers-dir")
    return args


def _env_int(name: str) -> Optional[int]:
    value = os.environ.get(name)
    return int(value) if value else None


def main(argv: Optional[List[str]] = None) -> int:
    # Load environment variables from a local .env file if present
    # (e.g. TRAITGEN_SEED=42).
    load_dotenv()

    args = parse_args(argv)
    configure_logging(level=args.log_level)

    try:
        if args.request is not None:
            request, variants = load_request(args.request, seed=args.seed, workers=args.workers)
        else:
            catalog = load_catalog_from_directory(args.layers_dir, DEFAULT_RARITY_DELIMITER)
            request = GenerationRequest(
                catalog=catalog,
                batch_size=args.batch_size,
                rarity_weights=default_rarity_weights(catalog),
                seed=args.seed,
                workers=args.workers or 1,
            )
            variants = standard_variants()

        if args.strict:
            request.missing_resource_policy = MissingResourcePolicy.STRICT

        pipeline = GenerationPipeline()
        result = pipeline.generate(request)

        stats = result.statistics
        logger.info(
            "Generated %d unique assets (%d possible combinations, %d attempts)",
            stats.actual_generated,
            stats.total_combinations,
            result.attempts,
        )
        for bucket, count in stats.rarity_histogram.items():
            logger.info("Rarity %s: %d assets", bucket, count)

        buffers = pipeline.render_all_variants(
            result.assets, variants, options=request.options, workers=request.workers
        )
        preview = None
        if not args.no_preview:
            preview = pipeline.render_collection_preview(result.assets, options=request.options)

        write_collection(
            result,
            catalog=request.catalog,
            variants=variants,
            variant_buffers=buffers,
            output_root=args.output_root,
            preview=preview,
        )
    except GenerationError as exc:
        logger.error("Generation failed: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
