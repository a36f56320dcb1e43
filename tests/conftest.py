# tests/conftest.py
import numpy as np
import pytest

from stitch.palette_tools import FixedPalette, PaletteEntry

RED = (1.0, 0.0, 0.0)
BLUE = (0.0, 0.0, 1.0)
GREEN = (0.0, 1.0, 0.0)
WHITE = (1.0, 1.0, 1.0)


def grid_from_rows(rows):
    """Build an H x W x 3 float grid from rows of RGB triples."""
    return np.array(rows, dtype=np.float64)


@pytest.fixture
def red_blue_grid():
    # 2x2: red, red / blue, blue
    return grid_from_rows([[RED, RED], [BLUE, BLUE]])


@pytest.fixture
def four_color_grid():
    # 10x10 with 40 red, 30 green, 20 blue and 10 white pixels
    flat = [RED] * 40 + [GREEN] * 30 + [BLUE] * 20 + [WHITE] * 10
    return np.array(flat, dtype=np.float64).reshape(10, 10, 3)


@pytest.fixture
def floss_palette():
    return FixedPalette(
        [
            PaletteEntry("310", "#000000", "Black"),
            PaletteEntry("B5200", "#ffffff", "Snow White"),
            PaletteEntry("666", "#e31d42", "Bright Red"),
            PaletteEntry("820", "#0e3682", "Royal Blue"),
            PaletteEntry("700", "#07731b", "Bright Green"),
        ],
        name="floss",
    )
