# tests/test_legend.py
from PIL import Image

from stitch import legend
from stitch.color import Color
from stitch.palette_tools import PaletteMatch

MATCHES = [
    PaletteMatch(1, Color(1, 0, 0), "666", "#e31d42"),
    PaletteMatch(2, Color(0, 1, 0), "700", "#07731b"),
    PaletteMatch(3, Color(1, 1, 1), "B5200", "#ffffff"),
]


def test_create_legend_image_returns_image(tmp_path):
    legend_image = legend.create_legend_image(MATCHES, font_size=12, swatch_size=20, padding=5)

    assert isinstance(legend_image, Image.Image)
    num_swatches = len(MATCHES)
    expected_width = (20 * num_swatches) + (5 * (num_swatches + 1))
    expected_height = 20 + (2 * 5)
    assert legend_image.size == (expected_width, expected_height)

    outpath = tmp_path / "legend_test_output.png"
    legend_image.save(outpath)
    assert outpath.exists()


def test_swatches_are_filled_with_palette_colors():
    legend_image = legend.create_legend_image(MATCHES, font_size=8, swatch_size=30, padding=10)
    # Top-left corner of each swatch interior, clear of the centered label.
    assert legend_image.getpixel((12, 12)) == (0xe3, 0x1d, 0x42)
    assert legend_image.getpixel((52, 12)) == (0x07, 0x73, 0x1b)


def test_counts_add_a_row_under_the_swatches():
    legend_image = legend.create_legend_image(MATCHES, counts={"666": 12}, font_size=10, swatch_size=20, padding=5)
    assert legend_image.size[1] == 20 + (2 * 5) + (10 + 5)


def test_create_legend_image_with_no_matches():
    assert legend.create_legend_image([]) is None


def test_text_color_contrasts_with_swatch():
    assert legend.text_color_for("#ffffff") == (0, 0, 0)
    assert legend.text_color_for("#000000") == (255, 255, 255)
