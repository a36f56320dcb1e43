import os
from dataclasses import dataclass, field, replace
from typing import Iterable, List, Optional, Sequence

import typer

from stitch.assemble import LabeledPixelTable, assemble_labeled_pixels
from stitch.errors import InvalidKRange
from stitch.palette_tools import PaletteMatch, resolve_palette
from stitch.pixels import PixelTable, build_pixel_table
from stitch.quantize import (
    DEFAULT_FINAL_RESTARTS,
    DEFAULT_MAX_ITER,
    DEFAULT_SCAN_RESTARTS,
    ClusteringTrial,
    FinalClustering,
    cluster_final,
    scan_k_range,
    validate_k,
    validate_k_range,
)

SEED_ENV = "STITCHGEN_SEED"
WORKERS_ENV = "STITCHGEN_WORKERS"


def _int_from_env(name: str) -> Optional[int]:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be an integer, got {raw!r}") from None


@dataclass(frozen=True)
class PipelineConfig:
    k_range: Optional[Sequence[int]] = None
    scan_restarts: int = DEFAULT_SCAN_RESTARTS
    final_restarts: int = DEFAULT_FINAL_RESTARTS
    max_iter: int = DEFAULT_MAX_ITER
    seed: Optional[int] = None
    workers: Optional[int] = None

    @classmethod
    def from_env(cls, **overrides) -> "PipelineConfig":
        """Defaults, then STITCHGEN_SEED / STITCHGEN_WORKERS, then explicit non-None overrides."""
        config = cls(seed=_int_from_env(SEED_ENV), workers=_int_from_env(WORKERS_ENV))
        return replace(config, **{key: value for key, value in overrides.items() if value is not None})


@dataclass(frozen=True)
class PipelineResult:
    """Every stage output of one pipeline run, by name."""
    pixels: PixelTable
    trials: List[ClusteringTrial]
    clustering: FinalClustering
    matches: List[PaletteMatch]
    labeled: LabeledPixelTable
    config: PipelineConfig = field(default_factory=PipelineConfig)

    def filtered(
        self,
        cluster_subset: Optional[Iterable[int]] = None,
        excluded_palette_code: Optional[str] = None,
    ) -> LabeledPixelTable:
        """A fresh labeled view of the full clustering with other filters applied."""
        return assemble_labeled_pixels(self.clustering, self.matches, cluster_subset, excluded_palette_code)


def scan_image(image, config: Optional[PipelineConfig] = None, verbose: bool = False):
    """Build the pixel table and the scree trials for ``config.k_range``."""
    config = config or PipelineConfig()
    if config.k_range is None:
        raise InvalidKRange("no scan range configured")
    pixels = build_pixel_table(image)
    trials = scan_k_range(
        pixels,
        config.k_range,
        restarts=config.scan_restarts,
        seed=config.seed,
        max_iter=config.max_iter,
        workers=config.workers,
        verbose=verbose,
    )
    return pixels, trials


def run_pipeline(
    image,
    k: int,
    oracle,
    config: Optional[PipelineConfig] = None,
    cluster_subset: Optional[Iterable[int]] = None,
    excluded_palette_code: Optional[str] = None,
    scan: bool = False,
    verbose: bool = False,
) -> PipelineResult:
    """
    Run pixel table -> (scan) -> final clustering -> palette -> assignment.

    Args:
        image: H x W x 3 grid normalized to [0, 1].
        k: Cluster count chosen by the operator.
        oracle: Palette oracle with a ``nearest(color)`` method.
        config: Restart counts, iteration cap, seed, workers and the
            configured scan range. When the range is set, ``k`` must lie in it.
        cluster_subset: Passed to the assembler.
        excluded_palette_code: Passed to the assembler.
        scan: Also compute scree trials over ``config.k_range``.
        verbose: Echo stage progress.

    Raises:
        StitchError: the subclass names the failing stage. Nothing is caught
            between stages.
    """
    config = config or PipelineConfig()
    pixels = build_pixel_table(image)
    validate_k(k, len(pixels), config.k_range)
    if config.k_range is not None:
        validate_k_range(config.k_range, len(pixels))

    trials: List[ClusteringTrial] = []
    if scan:
        if config.k_range is None:
            raise InvalidKRange("scan requested but no scan range configured")
        if verbose:
            typer.echo(f"Scanning k={list(config.k_range)[0]}..{list(config.k_range)[-1]} "
                       f"({config.scan_restarts} restarts each)...")
        trials = scan_k_range(
            pixels,
            config.k_range,
            restarts=config.scan_restarts,
            seed=config.seed,
            max_iter=config.max_iter,
            workers=config.workers,
            verbose=verbose,
        )

    if verbose:
        typer.echo(f"Clustering {len(pixels)} pixels into {k} colors ({config.final_restarts} restarts)...")
    clustering = cluster_final(
        pixels,
        k,
        restarts=config.final_restarts,
        seed=config.seed,
        k_range=config.k_range,
        max_iter=config.max_iter,
        workers=config.workers,
        verbose=verbose,
    )

    matches = resolve_palette(clustering.centroids, oracle, workers=config.workers)
    if verbose:
        typer.echo(f"Resolved {len(matches)} centroids against palette "
                   f"'{getattr(oracle, 'name', type(oracle).__name__)}'.")

    labeled = assemble_labeled_pixels(clustering, matches, cluster_subset, excluded_palette_code)
    if verbose:
        typer.echo(f"Assembled {len(labeled)} of {len(pixels)} pixels for rendering.")

    return PipelineResult(
        pixels=pixels,
        trials=trials,
        clustering=clustering,
        matches=matches,
        labeled=labeled,
        config=config,
    )
