# tests/test_render.py
from PIL import Image

from stitch import render
from stitch.assemble import assemble_labeled_pixels
from stitch.pixels import build_pixel_table
from stitch.quantize import ClusteringTrial, cluster_final
from stitch.palette_tools import resolve_palette


def labeled_red_blue(red_blue_grid, floss_palette, **filters):
    clustering = cluster_final(build_pixel_table(red_blue_grid), 2, restarts=3, seed=0)
    matches = resolve_palette(clustering.centroids, floss_palette)
    return assemble_labeled_pixels(clustering, matches, **filters)


def test_pattern_image_size_follows_grid(red_blue_grid, floss_palette):
    image = render.render_pattern_image(labeled_red_blue(red_blue_grid, floss_palette), cell_size=10)

    assert isinstance(image, Image.Image)
    assert image.size == (2 * 10 + 1, 2 * 10 + 1)
    assert image.getpixel((5, 5)) == (0xe3, 0x1d, 0x42)   # red row -> 666
    assert image.getpixel((5, 15)) == (0x0e, 0x36, 0x82)  # blue row -> 820


def test_excluded_cells_stay_background(red_blue_grid, floss_palette):
    labeled = labeled_red_blue(red_blue_grid, floss_palette, excluded_palette_code="820")
    image = render.render_pattern_image(labeled, cell_size=10, background="#ffffff")

    assert image.getpixel((5, 15)) == (255, 255, 255)
    assert image.getpixel((15, 5)) == (0xe3, 0x1d, 0x42)


def test_pattern_image_with_cell_labels(red_blue_grid, floss_palette):
    image = render.render_pattern_image(labeled_red_blue(red_blue_grid, floss_palette),
                                        cell_size=20, label_cells=True, show_grid=False)
    assert image.size == (41, 41)


def test_scree_image():
    trials = [ClusteringTrial(k, (), 10.0 / k, 12.0) for k in range(2, 6)]
    image = render.render_scree_image(trials, width=300, height=200)
    assert image.size == (300, 200)
    assert render.render_scree_image([]) is None
