from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, NamedTuple, Optional, Union

import numpy as np
from PIL import Image, UnidentifiedImageError

from stitch.errors import InvalidImageFormat


class Pixel(NamedTuple):
    x: int
    y: int
    R: float
    G: float
    B: float


def _read_only(array: np.ndarray) -> np.ndarray:
    array.flags.writeable = False
    return array


@dataclass(frozen=True, eq=False)
class PixelTable:
    """
    Columnar table with one row per image pixel.

    ``x`` is the column and ``y`` the row of the source grid (both 0-based),
    ``rgb`` holds the matching colors as an (N, 3) float array in [0, 1].
    """
    x: np.ndarray
    y: np.ndarray
    rgb: np.ndarray
    width: int
    height: int

    def __len__(self) -> int:
        return int(self.rgb.shape[0])

    def __iter__(self) -> Iterator[Pixel]:
        for x, y, (r, g, b) in zip(self.x.tolist(), self.y.tolist(), self.rgb.tolist()):
            yield Pixel(x, y, r, g, b)


def build_pixel_table(image) -> PixelTable:
    """
    Flatten a decoded H x W x 3 grid (values in [0, 1]) into a PixelTable.

    Raises:
        InvalidImageFormat: if the grid is not 3-D with exactly 3 channels,
            is empty, or holds values outside [0, 1].
    """
    try:
        grid = np.asarray(image, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise InvalidImageFormat(f"image is not a numeric pixel grid ({e})") from e

    if grid.ndim != 3 or grid.shape[2] != 3:
        raise InvalidImageFormat(
            f"image must expose exactly 3 color channels (H x W x 3), got shape {grid.shape}"
        )
    height, width = grid.shape[:2]
    if height == 0 or width == 0:
        raise InvalidImageFormat(f"image has zero dimension ({width}x{height})")
    if not np.all(np.isfinite(grid)) or grid.min() < 0.0 or grid.max() > 1.0:
        raise InvalidImageFormat("channel values must be finite and normalized to [0, 1]")

    ys, xs = np.indices((height, width))
    return PixelTable(
        x=_read_only(xs.reshape(-1).astype(np.int64)),
        y=_read_only(ys.reshape(-1).astype(np.int64)),
        rgb=_read_only(grid.reshape(-1, 3).copy()),
        width=int(width),
        height=int(height),
    )


def load_image(input_path: Union[str, Path], width: Optional[int] = None) -> np.ndarray:
    """
    Decode an image file into an H x W x 3 float grid in [0, 1].

    Args:
        input_path: Path to the image file.
        width: Optional target width in stitches. The height follows the
            source aspect ratio.

    Raises:
        InvalidImageFormat: if the file is missing or cannot be decoded.
    """
    try:
        with Image.open(input_path) as img:
            image = img.convert("RGB")
    except (FileNotFoundError, UnidentifiedImageError, OSError) as e:
        raise InvalidImageFormat(f"could not read image {input_path}: {e}") from e

    if width is not None:
        if width < 1:
            raise InvalidImageFormat(f"target width must be positive, got {width}")
        source_w, source_h = image.size
        height = max(1, round(source_h * width / source_w))
        image = image.resize((width, height), Image.Resampling.LANCZOS)

    return np.asarray(image, dtype=np.float64) / 255.0
