from collections import Counter
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, NamedTuple, Optional, Sequence

import numpy as np

from stitch.errors import PaletteLookupError
from stitch.palette_tools import PaletteMatch
from stitch.quantize import FinalClustering


class LabeledPixel(NamedTuple):
    x: int
    y: int
    cluster_id: int
    palette_hex: str
    palette_code: str


@dataclass(frozen=True, eq=False)
class LabeledPixelTable:
    """
    Per-pixel cluster and palette assignment handed to renderers.

    Columns are read-only numpy arrays of equal length. Rows dropped by
    filtering are simply absent; ``width``/``height`` still describe the full
    source grid so renderers can leave those cells blank.
    """
    x: np.ndarray
    y: np.ndarray
    cluster_id: np.ndarray
    palette_hex: np.ndarray
    palette_code: np.ndarray
    width: int
    height: int

    def __len__(self) -> int:
        return int(self.cluster_id.shape[0])

    def __iter__(self) -> Iterator[LabeledPixel]:
        columns = (self.x.tolist(), self.y.tolist(), self.cluster_id.tolist(),
                   self.palette_hex.tolist(), self.palette_code.tolist())
        for row in zip(*columns):
            yield LabeledPixel(*row)

    def cluster_ids(self) -> set:
        return set(np.unique(self.cluster_id).tolist())


def _frozen(array: np.ndarray) -> np.ndarray:
    array.flags.writeable = False
    return array


def assemble_labeled_pixels(
    clustering: FinalClustering,
    matches: Sequence[PaletteMatch],
    cluster_subset: Optional[Iterable[int]] = None,
    excluded_palette_code: Optional[str] = None,
) -> LabeledPixelTable:
    """
    Join per-pixel cluster labels with their resolved palette colors.

    Args:
        clustering: Output of ``cluster_final``.
        matches: Output of ``resolve_palette`` for the same clustering.
        cluster_subset: Cluster ids to keep. None keeps every cluster.
        excluded_palette_code: Drop every pixel resolved to this code, e.g.
            the fabric color used as background. None drops nothing.

    Returns:
        LabeledPixelTable: Pixels passing both filters, in clustering row order.

    Raises:
        PaletteLookupError: if a cluster id in the clustering has no match.
    """
    by_id: Dict[int, PaletteMatch] = {match.cluster_id: match for match in matches}
    missing = sorted(set(clustering.centroids) - set(by_id))
    if missing:
        raise PaletteLookupError(f"no palette match for cluster ids {missing}", stage="assignment")

    ids = np.arange(clustering.k + 1)
    hex_lookup = np.array([""] + [by_id[i].palette_hex for i in ids[1:]], dtype=object)
    code_lookup = np.array([""] + [by_id[i].palette_code for i in ids[1:]], dtype=object)

    labels = clustering.labels
    keep = np.ones(labels.shape[0], dtype=bool)
    if cluster_subset is not None:
        keep &= np.isin(labels, np.fromiter(set(cluster_subset), dtype=np.int64))
    if excluded_palette_code is not None:
        keep &= code_lookup[labels] != excluded_palette_code

    kept_labels = labels[keep]
    return LabeledPixelTable(
        x=_frozen(clustering.x[keep]),
        y=_frozen(clustering.y[keep]),
        cluster_id=_frozen(kept_labels.copy()),
        palette_hex=_frozen(hex_lookup[kept_labels]),
        palette_code=_frozen(code_lookup[kept_labels]),
        width=clustering.width,
        height=clustering.height,
    )


def stitch_counts(labeled: LabeledPixelTable) -> Dict[str, int]:
    """Stitches per palette code, most used first (ties by code)."""
    counts = Counter(labeled.palette_code.tolist())
    return dict(sorted(counts.items(), key=lambda item: (-item[1], item[0])))
