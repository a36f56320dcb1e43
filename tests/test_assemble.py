# tests/test_assemble.py
import numpy as np
import pytest

from stitch.assemble import LabeledPixel, assemble_labeled_pixels, stitch_counts
from stitch.color import Color
from stitch.errors import PaletteLookupError
from stitch.palette_tools import PaletteMatch
from stitch.quantize import FinalClustering


def make_clustering(label_rows):
    """FinalClustering from a 2-D grid of cluster ids."""
    grid = np.array(label_rows, dtype=np.int64)
    height, width = grid.shape
    ys, xs = np.indices(grid.shape)
    labels = grid.reshape(-1)
    k = int(labels.max())
    return FinalClustering(
        k=k,
        centroids={i: Color(i / k, 0.0, 0.0) for i in range(1, k + 1)},
        x=xs.reshape(-1),
        y=ys.reshape(-1),
        labels=labels,
        sizes={i: int((labels == i).sum()) for i in range(1, k + 1)},
        total_withinss=0.0,
        width=width,
        height=height,
    )


@pytest.fixture
def clustering():
    return make_clustering([
        [1, 1, 2],
        [1, 3, 2],
        [3, 3, 1],
    ])


@pytest.fixture
def matches():
    return [
        PaletteMatch(1, Color(1 / 3, 0, 0), "B5200", "#ffffff"),
        PaletteMatch(2, Color(2 / 3, 0, 0), "666", "#e31d42"),
        PaletteMatch(3, Color(1, 0, 0), "666", "#e31d42"),
    ]


def test_no_filters_keeps_every_pixel(clustering, matches):
    labeled = assemble_labeled_pixels(clustering, matches)

    assert len(labeled) == len(clustering) == 9
    assert (labeled.width, labeled.height) == (3, 3)
    rows = {(row.x, row.y): row for row in labeled}
    assert rows[(0, 0)] == LabeledPixel(0, 0, 1, "#ffffff", "B5200")
    assert rows[(2, 1)] == LabeledPixel(2, 1, 2, "#e31d42", "666")


def test_cluster_subset_keeps_only_listed_ids(clustering, matches):
    labeled = assemble_labeled_pixels(clustering, matches, cluster_subset={2, 3})

    assert len(labeled) == 5
    assert labeled.cluster_ids() == {2, 3}


def test_excluded_code_drops_every_cluster_using_it(clustering, matches):
    labeled = assemble_labeled_pixels(clustering, matches, excluded_palette_code="666")

    assert len(labeled) == 4
    assert set(labeled.palette_code.tolist()) == {"B5200"}


def test_excluding_an_unused_code_changes_nothing(clustering, matches):
    full = assemble_labeled_pixels(clustering, matches)
    same = assemble_labeled_pixels(clustering, matches, excluded_palette_code="310")

    assert list(full) == list(same)


def test_row_count_shrinks_monotonically(clustering, matches):
    subsets = [{1, 2, 3}, {1, 2}, {1}, set()]
    counts = [len(assemble_labeled_pixels(clustering, matches, cluster_subset=s)) for s in subsets]
    assert counts == sorted(counts, reverse=True)
    assert counts[-1] == 0

    for subset in subsets:
        plain = len(assemble_labeled_pixels(clustering, matches, cluster_subset=subset))
        excluded = len(assemble_labeled_pixels(clustering, matches, cluster_subset=subset,
                                               excluded_palette_code="B5200"))
        assert excluded <= plain


def test_filters_commute_and_leave_rows_untouched(clustering, matches):
    both = assemble_labeled_pixels(clustering, matches, cluster_subset={1, 3}, excluded_palette_code="B5200")
    full = {(row.x, row.y): row for row in assemble_labeled_pixels(clustering, matches)}

    assert both.cluster_ids() == {3}
    for row in both:
        assert full[(row.x, row.y)] == row


def test_output_is_read_only(clustering, matches):
    labeled = assemble_labeled_pixels(clustering, matches)
    with pytest.raises(ValueError):
        labeled.cluster_id[0] = 2


def test_missing_match_is_an_error(clustering, matches):
    with pytest.raises(PaletteLookupError) as excinfo:
        assemble_labeled_pixels(clustering, matches[:2])
    assert "[assignment]" in str(excinfo.value)


def test_stitch_counts_orders_by_usage(clustering, matches):
    counts = stitch_counts(assemble_labeled_pixels(clustering, matches))
    assert counts == {"666": 5, "B5200": 4}
    assert list(counts) == ["666", "B5200"]
