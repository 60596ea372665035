"""
Grid Splitter - cut an image into ``rows x cols`` PNG tiles.

Tile edges are placed at ``i * size // n`` so the tiles cover the source
exactly, with any remainder pixels spread across tiles. Decoding and
encoding are CPU bound; use ``split_image_async`` from the event loop.
"""

import asyncio
import io
from dataclasses import dataclass

from PIL import Image, UnidentifiedImageError

from nodebanana.utils.data_url import encode_data_url

_PNG_MODES = {"1", "L", "LA", "P", "RGB", "RGBA", "I", "I;16"}


@dataclass
class GridTile:
    """One tile, as a PNG data URL with its exact pixel size."""

    row: int
    col: int
    image: str
    width: int
    height: int

    @property
    def filename(self) -> str:
        return f"split-{self.row + 1}-{self.col + 1}.png"


def split_image(data: bytes, rows: int, cols: int) -> list[GridTile]:
    """
    Split encoded image bytes into tiles, row-major.

    Raises:
        ValueError: bad grid shape, or the bytes are not a decodable image
    """
    if rows < 1 or cols < 1:
        raise ValueError(f"Invalid grid {rows}x{cols}")
    try:
        with Image.open(io.BytesIO(data)) as source:
            source.load()
            image = source if source.mode in _PNG_MODES else source.convert("RGBA")
            width, height = image.size
            if width < cols or height < rows:
                raise ValueError(f"Image {width}x{height} is too small for a {rows}x{cols} grid")

            tiles = []
            for row in range(rows):
                top, bottom = row * height // rows, (row + 1) * height // rows
                for col in range(cols):
                    left, right = col * width // cols, (col + 1) * width // cols
                    tile = image.crop((left, top, right, bottom))
                    buffer = io.BytesIO()
                    tile.save(buffer, format="PNG")
                    tiles.append(
                        GridTile(
                            row=row,
                            col=col,
                            image=encode_data_url(buffer.getvalue(), "image/png"),
                            width=tile.width,
                            height=tile.height,
                        )
                    )
            return tiles
    except (UnidentifiedImageError, OSError) as e:
        raise ValueError(f"Failed to split image: {e}") from e


async def split_image_async(data: bytes, rows: int, cols: int) -> list[GridTile]:
    """``split_image`` in a worker thread."""
    return await asyncio.to_thread(split_image, data, rows, cols)
