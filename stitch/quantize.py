import warnings
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import typer
from sklearn.cluster import KMeans
from sklearn.exceptions import ConvergenceWarning

from stitch.color import Color
from stitch.errors import EmptyClusterError, InvalidKRange
from stitch.pixels import PixelTable

DEFAULT_SCAN_RESTARTS = 4
DEFAULT_FINAL_RESTARTS = 20
DEFAULT_MAX_ITER = 300
# Attempts per restart slot before the slot is given up as degenerate
RESTART_ATTEMPTS = 3

_SEED_CEILING = 2**31 - 1


@dataclass(frozen=True)
class ClusteringTrial:
    """Fit statistics for one scanned cluster count."""
    k: int
    centroids: Tuple[Color, ...]
    total_withinss: float
    total_ss: float

    @property
    def between_ratio(self) -> float:
        if self.total_ss <= 0:
            return 0.0
        return 1.0 - self.total_withinss / self.total_ss


@dataclass(frozen=True, eq=False)
class FinalClustering:
    """
    Result of the final k-means run.

    ``labels`` is aligned with the rows of the PixelTable that was clustered
    (``x``/``y`` are carried along so the result stands on its own). Cluster
    ids run 1..k, ordered by descending cluster size, then ascending centroid
    luminance.
    """
    k: int
    centroids: Mapping[int, Color]
    x: np.ndarray
    y: np.ndarray
    labels: np.ndarray
    sizes: Mapping[int, int]
    total_withinss: float
    width: int
    height: int

    def __post_init__(self):
        object.__setattr__(self, "centroids", MappingProxyType(dict(self.centroids)))
        object.__setattr__(self, "sizes", MappingProxyType(dict(self.sizes)))

    @property
    def pixel_labels(self) -> Dict[Tuple[int, int], int]:
        return {
            (x, y): label
            for x, y, label in zip(self.x.tolist(), self.y.tolist(), self.labels.tolist())
        }

    def __len__(self) -> int:
        return int(self.labels.shape[0])


@dataclass(frozen=True, eq=False)
class _Restart:
    labels: np.ndarray
    centers: np.ndarray
    withinss: float


def _is_int(value) -> bool:
    return isinstance(value, (int, np.integer)) and not isinstance(value, bool)


def validate_k_range(k_range: Sequence[int], n_pixels: int) -> List[int]:
    """
    Check that ``k_range`` is a contiguous ascending run of usable cluster counts.

    Raises:
        InvalidKRange: if the range is empty, not contiguous and ascending,
            or holds a k below 2 or above the pixel count.
    """
    ks = list(k_range)
    if not ks:
        raise InvalidKRange("k range is empty")
    if not all(_is_int(k) for k in ks):
        raise InvalidKRange(f"k range must contain integers, got {ks}")
    if any(b - a != 1 for a, b in zip(ks, ks[1:])):
        raise InvalidKRange(f"k range must be contiguous and ascending, got {ks}")
    if ks[0] < 2:
        raise InvalidKRange(f"every k must be at least 2, range starts at {ks[0]}")
    if ks[-1] > n_pixels:
        raise InvalidKRange(f"k={ks[-1]} exceeds the pixel count ({n_pixels})")
    return [int(k) for k in ks]


def validate_k(k, n_pixels: int, k_range: Optional[Sequence[int]] = None) -> int:
    if not _is_int(k):
        raise InvalidKRange(f"k must be an integer, got {k!r}")
    if k < 2:
        raise InvalidKRange(f"k must be at least 2, got {k}")
    if k > n_pixels:
        raise InvalidKRange(f"k={k} exceeds the pixel count ({n_pixels})")
    if k_range is not None:
        ks = list(k_range)
        if k not in ks:
            bounds = f"{ks[0]}..{ks[-1]}" if ks else "(empty)"
            raise InvalidKRange(f"k={k} is outside the configured scan range {bounds}")
    return int(k)


def _total_ss(rgb: np.ndarray) -> float:
    return float(((rgb - rgb.mean(axis=0)) ** 2).sum())


def _run_restart(rgb: np.ndarray, k: int, seed: int, max_iter: int, allow_empty: bool = False) -> Optional[_Restart]:
    """
    One Lloyd k-means run from a random initialization.

    Returns None when the run ends with an empty cluster, unless
    ``allow_empty`` is set. An empty cluster then keeps the center k-means
    left it at.
    """
    kmeans = KMeans(
        n_clusters=k,
        init="random",
        n_init=1,
        max_iter=max_iter,
        random_state=seed,
        algorithm="lloyd",
    )
    labels = kmeans.fit_predict(rgb)

    counts = np.bincount(labels, minlength=k)
    if np.any(counts == 0) and not allow_empty:
        return None

    # Centroids are exactly the mean color of their members.
    centers = np.array(kmeans.cluster_centers_, dtype=np.float64)
    for c in np.flatnonzero(counts):
        centers[c] = rgb[labels == c].mean(axis=0)
    centers = np.clip(centers, 0.0, 1.0)
    withinss = float(((rgb - centers[labels]) ** 2).sum())
    return _Restart(labels=labels, centers=centers, withinss=withinss)


def _best_of_restarts(
    rgb: np.ndarray,
    k: int,
    restarts: int,
    seed: Optional[int],
    max_iter: int,
    workers: Optional[int],
    allow_empty: bool = False,
) -> _Restart:
    if restarts < 1:
        raise ValueError(f"restarts must be at least 1, got {restarts}")

    # Seeds are drawn up front so a fixed seed gives the same result with or without workers.
    seeds = np.random.default_rng(seed).integers(0, _SEED_CEILING, size=(restarts, RESTART_ATTEMPTS))

    def run_slot(slot: int) -> Optional[_Restart]:
        for attempt_seed in seeds[slot]:
            result = _run_restart(rgb, k, int(attempt_seed), max_iter, allow_empty)
            if result is not None:
                return result
        return None

    # The filter list is process-wide, so it is set here and never from worker threads.
    with warnings.catch_warnings():
        # Raised when the data has fewer distinct colors than k; empty clusters are handled per restart.
        warnings.simplefilter("ignore", ConvergenceWarning)
        if workers and workers > 1:
            with ThreadPoolExecutor(max_workers=workers) as executor:
                results = list(executor.map(run_slot, range(restarts)))
        else:
            results = [run_slot(slot) for slot in range(restarts)]

    best: Optional[_Restart] = None
    for result in results:
        # Strict comparison: the first restart wins ties.
        if result is not None and (best is None or result.withinss < best.withinss):
            best = result

    if best is None:
        raise EmptyClusterError(
            f"every restart at k={k} left a cluster with no pixels "
            f"({restarts} restarts x {RESTART_ATTEMPTS} attempts); "
            f"the image likely has fewer than {k} distinct colors"
        )
    return best


def _canonical_order(labels: np.ndarray, centers: np.ndarray) -> List[int]:
    """Raw cluster indices sorted by descending size, then ascending luminance, then RGB."""
    counts = np.bincount(labels, minlength=len(centers))
    colors = [Color(*map(float, c)) for c in centers]
    return sorted(
        range(len(centers)),
        key=lambda i: (-int(counts[i]), colors[i].luminance, colors[i].as_tuple()),
    )


def scan_k_range(
    pixels: PixelTable,
    k_range: Sequence[int],
    restarts: int = DEFAULT_SCAN_RESTARTS,
    seed: Optional[int] = None,
    max_iter: int = DEFAULT_MAX_ITER,
    workers: Optional[int] = None,
    verbose: bool = False,
) -> List[ClusteringTrial]:
    """
    Cluster the pixel colors at every k in ``k_range`` and record fit quality.

    Only the RGB columns take part; pixel coordinates are ignored. The result
    is scree data for choosing k and is not consumed by later stages.
    A k above the number of distinct colors still gets a trial: its fit
    may leave some clusters empty, and empty clusters add nothing to the
    within-cluster SS.

    Args:
        pixels: Table produced by ``build_pixel_table``.
        k_range: Contiguous ascending cluster counts, e.g. ``range(2, 11)``.
        restarts: Random restarts per k. Kept low since this is exploratory.
        seed: Seed for reproducible runs. None draws fresh entropy.
        max_iter: Iteration cap per k-means run.
        workers: Run restarts on this many threads when greater than 1.
        verbose: Echo progress per k.

    Returns:
        List[ClusteringTrial]: One trial per k, ascending k.

    Raises:
        InvalidKRange: if ``k_range`` is not usable for this table.
    """
    ks = validate_k_range(k_range, len(pixels))
    rgb = pixels.rgb
    total_ss = _total_ss(rgb)
    rng = np.random.default_rng(seed)

    trials: List[ClusteringTrial] = []
    for k in ks:
        k_seed = int(rng.integers(0, _SEED_CEILING))
        best = _best_of_restarts(rgb, k, restarts, k_seed, max_iter, workers, allow_empty=True)
        order = _canonical_order(best.labels, best.centers)
        trial = ClusteringTrial(
            k=k,
            centroids=tuple(Color(*map(float, best.centers[i])) for i in order),
            total_withinss=best.withinss,
            total_ss=total_ss,
        )
        trials.append(trial)
        if verbose:
            typer.echo(f"  k={k}: within-cluster SS {trial.total_withinss:.4f} "
                       f"({trial.between_ratio:.1%} of variance explained)")
    return trials


def cluster_final(
    pixels: PixelTable,
    k: int,
    restarts: int = DEFAULT_FINAL_RESTARTS,
    seed: Optional[int] = None,
    k_range: Optional[Sequence[int]] = None,
    max_iter: int = DEFAULT_MAX_ITER,
    workers: Optional[int] = None,
    verbose: bool = False,
) -> FinalClustering:
    """
    Cluster pixel colors into exactly ``k`` groups for the final pattern.

    Runs ``restarts`` randomly initialized k-means fits and keeps the one with
    the lowest within-cluster sum of squares. Restarts that end with an empty
    cluster are retried with a new seed. Cluster ids are renumbered 1..k by
    descending size, ties by ascending luminance, so runs with different seeds
    that find the same partition number it the same way.

    Args:
        pixels: Table produced by ``build_pixel_table``.
        k: Number of clusters (at least 2, at most the pixel count).
        restarts: Random restarts. Higher than the scan's for a stable result.
        seed: Seed for reproducible runs. None draws fresh entropy.
        k_range: The configured scan range, if any. ``k`` must lie within it.
        max_iter: Iteration cap per k-means run.
        workers: Run restarts on this many threads when greater than 1.
        verbose: Echo a summary line.

    Raises:
        InvalidKRange: if ``k`` is unusable or outside ``k_range``.
        EmptyClusterError: if every restart leaves a cluster empty.
    """
    k = validate_k(k, len(pixels), k_range)
    best = _best_of_restarts(pixels.rgb, k, restarts, seed, max_iter, workers)

    order = _canonical_order(best.labels, best.centers)
    remap = np.empty(k, dtype=np.int64)
    for new_index, raw_index in enumerate(order):
        remap[raw_index] = new_index + 1
    labels = remap[best.labels]
    labels.flags.writeable = False

    centroids = {new_index + 1: Color(*map(float, best.centers[raw_index]))
                 for new_index, raw_index in enumerate(order)}
    counts = np.bincount(labels, minlength=k + 1)
    sizes = {cluster_id: int(counts[cluster_id]) for cluster_id in centroids}

    if verbose:
        typer.echo(f"Final clustering at k={k}: within-cluster SS {best.withinss:.4f} "
                   f"(best of {restarts} restarts).")

    return FinalClustering(
        k=k,
        centroids=centroids,
        x=pixels.x,
        y=pixels.y,
        labels=labels,
        sizes=sizes,
        total_withinss=best.withinss,
        width=pixels.width,
        height=pixels.height,
    )
