"""Shared pytest fixtures for traitgen tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from tests.helpers import write_trait
from traitgen.catalog import LayerCatalog, load_catalog_from_directory

# ============================================================================
# Catalog fixtures
# ============================================================================


@pytest.fixture
def layers_dir(tmp_path: Path) -> Path:
    """Two layers: background (70/30) and eyes (50/50)."""
    root = tmp_path / "layers"
    write_trait(root / "1-background" / "Blue#70.png", (0, 0, 255, 255))
    write_trait(root / "1-background" / "Red#30.png", (255, 0, 0, 255))
    write_trait(root / "2-eyes" / "Gold#50.png", (255, 215, 0, 255), box=(8, 8, 24, 16))
    write_trait(root / "2-eyes" / "Green#50.png", (0, 200, 0, 255), box=(8, 16, 24, 24))
    return root


@pytest.fixture
def catalog(layers_dir: Path) -> LayerCatalog:
    return load_catalog_from_directory(layers_dir)
