"""Image helpers shared by the traitgen tests."""

from __future__ import annotations

from pathlib import Path

from PIL import Image


def write_trait(path: Path, color: tuple, size: tuple = (32, 32), box: tuple | None = None) -> Path:
    """Write an RGBA PNG that is transparent except for `box` filled with `color`."""
    path.parent.mkdir(parents=True, exist_ok=True)
    img = Image.new("RGBA", size, (0, 0, 0, 0))
    if box is None:
        box = (0, 0, size[0], size[1])
    img.paste(Image.new("RGBA", (box[2] - box[0], box[3] - box[1]), color), box[:2])
    img.save(path, format="PNG")
    return path


def solid(color: tuple, size: tuple = (8, 8)) -> Image.Image:
    return Image.new("RGBA", size, color)
