import shlex
import sys
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Set

import rich.traceback
import typer
from rich.console import Console
from rich.table import Table

from stitch import file_utils, legend, render
from stitch.assemble import stitch_counts
from stitch.errors import StitchError
from stitch.palette_tools import load_palette, shared_palette_codes
from stitch.pipeline import PipelineConfig, run_pipeline, scan_image
from stitch.pixels import load_image

app = typer.Typer(help="Turn an image into a cross-stitch pattern with a fixed thread palette.")
console = Console()


class StitchFile(Enum):
    PATTERN_RASTER = "pattern_raster"
    PATTERN_VECTOR = "pattern_vector"
    PALETTE_LEGEND = "palette_legend"
    PALETTE_CSV = "palette_csv"
    SCREE_CSV = "scree_csv"
    SCREE_CHART = "scree_chart"


STITCH_FILE_BASENAMES: Dict[StitchFile, str] = {
    StitchFile.PATTERN_RASTER: "stitch-pattern.png",
    StitchFile.PATTERN_VECTOR: "stitch-pattern.svg",
    StitchFile.PALETTE_LEGEND: "stitch-legend.png",
    StitchFile.PALETTE_CSV: "stitch-palette.csv",
    StitchFile.SCREE_CSV: "scan-scree.csv",
    StitchFile.SCREE_CHART: "scan-scree.png",
}

PRESETS = {
    "beginner": {"num_colors": 6, "cell_size": 16},
    "intermediate": {"num_colors": 12, "cell_size": 12},
    "master": {"num_colors": 24, "cell_size": 10},
}
DEFAULT_NUM_COLORS = 12
DEFAULT_CELL_SIZE = 12


def validate_output_dir(output_dir: Path, overwrite: bool, expect: List[StitchFile]) -> Dict[StitchFile, Path]:
    output_dir.mkdir(parents=True, exist_ok=True)
    paths = {key: output_dir / STITCH_FILE_BASENAMES[key] for key in expect}
    if not overwrite:
        clobbered = [str(p) for p in paths.values() if p.exists()]
        if clobbered:
            typer.secho("Error: Files already exist:", fg=typer.colors.RED)
            for path_str in clobbered:
                typer.secho(f"  {path_str}", fg=typer.colors.RED)
            typer.secho("Use --yes (-y) to overwrite.", fg=typer.colors.YELLOW)
            raise typer.Exit(code=1)
    return paths


def parse_cluster_subset(value: Optional[str]) -> Optional[Set[int]]:
    if not value:
        return None
    try:
        return {int(part) for part in value.split(",") if part.strip()}
    except ValueError:
        raise typer.BadParameter(f"--clusters expects comma-separated ids like '1,3,4', got '{value}'")


def k_range_from_options(k_min: Optional[int], k_max: Optional[int]):
    if k_min is None and k_max is None:
        return None
    k_min = 2 if k_min is None else k_min
    k_max = 10 if k_max is None else k_max
    return range(k_min, k_max + 1)


def print_scree_table(trials):
    table = Table(title="Clustering fit by k")
    table.add_column("k", justify="right")
    table.add_column("within SS", justify="right")
    table.add_column("total SS", justify="right")
    table.add_column("explained", justify="right")
    for trial in trials:
        table.add_row(str(trial.k), f"{trial.total_withinss:.4f}", f"{trial.total_ss:.4f}",
                      f"{trial.between_ratio:.1%}")
    console.print(table)


def print_match_table(matches, counts):
    shared = shared_palette_codes(matches)
    table = Table(title="Palette matches")
    table.add_column("cluster", justify="right")
    table.add_column("centroid")
    table.add_column("code")
    table.add_column("palette hex")
    table.add_column("stitches", justify="right")
    table.add_column("shared with")
    for match in matches:
        others = [str(i) for i in shared.get(match.palette_code, []) if i != match.cluster_id]
        table.add_row(
            str(match.cluster_id),
            f"[on {match.centroid_color.hex}]    [/] {match.centroid_color.hex}",
            match.palette_code,
            f"[on {match.palette_hex}]    [/] {match.palette_hex}",
            str(counts.get(match.palette_code, 0)),
            ", ".join(others),
        )
    console.print(table)


def config_from_env(**overrides) -> PipelineConfig:
    try:
        return PipelineConfig.from_env(**overrides)
    except ValueError as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED)
        raise typer.Exit(code=1)


@app.command()
def scan(
    input_path: Path = typer.Argument(
        ..., help="Input image file.", metavar="INPUT_FILE",
        exists=True, file_okay=True, dir_okay=False, readable=True, resolve_path=True,
    ),
    output_dir: Optional[Path] = typer.Argument(
        None, help="Optional directory for scan-scree.csv and scan-scree.png.", metavar="OUTPUT_DIRECTORY",
        file_okay=False, dir_okay=True, resolve_path=True,
    ),
    k_min: int = typer.Option(2, "--k-min", min=2, help="Smallest cluster count to try."),
    k_max: int = typer.Option(10, "--k-max", min=2, help="Largest cluster count to try."),
    restarts: Optional[int] = typer.Option(None, "--restarts", min=1, help="Restarts per k. Default: 4."),
    width: Optional[int] = typer.Option(None, "--width", min=1, help="Resize to this many stitches wide first."),
    seed: Optional[int] = typer.Option(None, "--seed", help="Random seed. Default: $STITCHGEN_SEED."),
    workers: Optional[int] = typer.Option(None, "--workers", min=1, help="Threads for restarts. Default: $STITCHGEN_WORKERS."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Overwrite existing files."),
):
    """Cluster at every k in a range and report fit quality to help pick --num-colors."""
    if k_max < k_min:
        typer.secho(f"Error: --k-max ({k_max}) is below --k-min ({k_min}).", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    paths = None
    if output_dir is not None:
        paths = validate_output_dir(output_dir, yes, [StitchFile.SCREE_CSV, StitchFile.SCREE_CHART])
    config = config_from_env(k_range=range(k_min, k_max + 1), scan_restarts=restarts, seed=seed, workers=workers)

    try:
        image = load_image(input_path, width=width)
        typer.echo(f"Scanning k={k_min}..{k_max} on {image.shape[1]}x{image.shape[0]} stitches...")
        _, trials = scan_image(image, config, verbose=True)
    except StitchError as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    print_scree_table(trials)

    if paths is not None:
        file_utils.write_scree_csv(paths[StitchFile.SCREE_CSV], trials)
        chart = render.render_scree_image(trials)
        file_utils.save_stitch_png(
            chart, paths[StitchFile.SCREE_CHART],
            command_line_invocation=" ".join(shlex.quote(arg) for arg in sys.argv),
            additional_metadata={"Stitchgen-FileType": "Scree Chart", "SourceImage": str(input_path)},
        )
        typer.echo(f"Scree data saved to: {paths[StitchFile.SCREE_CSV]}")
        typer.echo(f"Scree chart saved to: {paths[StitchFile.SCREE_CHART]}")

    typer.secho("\nScan complete!", fg=typer.colors.GREEN)


@app.command()
def pattern(
    input_path: Path = typer.Argument(
        ..., help="Input image file.", metavar="INPUT_FILE",
        exists=True, file_okay=True, dir_okay=False, readable=True, resolve_path=True,
    ),
    output_dir: Path = typer.Argument(
        ..., help="Directory for output files. Will be created if it doesn't exist.", metavar="OUTPUT_DIRECTORY",
        file_okay=False, dir_okay=True, resolve_path=True,
    ),
    preset: Optional[str] = typer.Option(None, help="Preset complexity level: beginner, intermediate, master."),
    num_colors: Optional[int] = typer.Option(None, "--num-colors", "-k", help="Number of clusters. Default: 12."),
    palette: str = typer.Option(
        "named", "--palette",
        help="Thread palette: 'named' (CSS color names), or a .json/.csv palette file, or a swatch image.",
    ),
    restarts: Optional[int] = typer.Option(None, "--restarts", min=1, help="Final clustering restarts. Default: 20."),
    k_min: Optional[int] = typer.Option(None, "--k-min", min=2, help="Configured scan range start; enables the scan."),
    k_max: Optional[int] = typer.Option(None, "--k-max", min=2, help="Configured scan range end; enables the scan."),
    clusters: Optional[str] = typer.Option(None, "--clusters", help="Only keep these cluster ids, e.g. '1,3'."),
    exclude: Optional[str] = typer.Option(None, "--exclude", help="Palette code to leave unstitched (background)."),
    width: Optional[int] = typer.Option(None, "--width", min=1, help="Resize to this many stitches wide first."),
    cell_size: Optional[int] = typer.Option(None, "--cell-size", min=2, help="Pixels per stitch in outputs. Default: 12."),
    label_cells: bool = typer.Option(False, "--label-cells", help="Print cluster ids inside raster cells."),
    seed: Optional[int] = typer.Option(None, "--seed", help="Random seed. Default: $STITCHGEN_SEED."),
    workers: Optional[int] = typer.Option(None, "--workers", min=1, help="Threads for restarts and lookups."),
    raster_only: bool = typer.Option(False, "--raster-only", help="Skip vector SVG output."),
    skip_legend: bool = typer.Option(False, "--skip-legend", help="Skip generating the palette legend."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Overwrite existing files."),
):
    """Cluster the image, match each cluster to the palette and write the pattern."""
    command_line_str = " ".join(shlex.quote(arg) for arg in sys.argv)

    effective_num_colors = num_colors
    effective_cell_size = cell_size
    if preset:
        if preset not in PRESETS:
            typer.secho(f"Error: Unknown preset '{preset}'. Choose from {', '.join(PRESETS)}.", fg=typer.colors.RED)
            raise typer.Exit(code=1)
        typer.echo(f"Applying preset complexity: '{preset}'")
        if effective_num_colors is None: effective_num_colors = PRESETS[preset]["num_colors"]
        if effective_cell_size is None: effective_cell_size = PRESETS[preset]["cell_size"]
    if effective_num_colors is None: effective_num_colors = DEFAULT_NUM_COLORS
    if effective_cell_size is None: effective_cell_size = DEFAULT_CELL_SIZE

    expect = [StitchFile.PATTERN_RASTER, StitchFile.PALETTE_CSV]
    if not raster_only: expect.append(StitchFile.PATTERN_VECTOR)
    if not skip_legend: expect.append(StitchFile.PALETTE_LEGEND)
    k_range = k_range_from_options(k_min, k_max)
    if k_range is not None: expect.extend([StitchFile.SCREE_CSV, StitchFile.SCREE_CHART])
    output_paths = validate_output_dir(output_dir, yes, expect)

    cluster_subset = parse_cluster_subset(clusters)
    config = config_from_env(k_range=k_range, final_restarts=restarts, seed=seed, workers=workers)

    try:
        oracle = load_palette(palette)
    except (OSError, ValueError) as e:
        typer.secho(f"Error loading palette '{palette}': {e}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(f"Using palette '{oracle.name}' with {len(oracle)} colors.")

    try:
        image = load_image(input_path, width=width)
        typer.echo(f"Pattern size: {image.shape[1]}x{image.shape[0]} stitches, aiming for {effective_num_colors} colors.")
        result = run_pipeline(
            image,
            effective_num_colors,
            oracle,
            config=config,
            cluster_subset=cluster_subset,
            excluded_palette_code=exclude,
            scan=k_range is not None,
            verbose=True,
        )
    except StitchError as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    if result.trials:
        print_scree_table(result.trials)
        file_utils.write_scree_csv(output_paths[StitchFile.SCREE_CSV], result.trials)
        file_utils.save_stitch_png(
            render.render_scree_image(result.trials), output_paths[StitchFile.SCREE_CHART],
            command_line_invocation=command_line_str,
            additional_metadata={"Stitchgen-FileType": "Scree Chart", "SourceImage": str(input_path)},
        )

    if exclude is not None and exclude not in {m.palette_code for m in result.matches}:
        typer.secho(f"Note: no cluster resolved to '{exclude}'; nothing was excluded.", fg=typer.colors.BLUE)

    counts = stitch_counts(result.labeled)
    print_match_table(result.matches, counts)

    pattern_metadata = {
        "Stitchgen-FileType": "Stitch Pattern",
        "SourceImage": str(input_path),
        "Palette": oracle.name,
        "Clusters": str(result.clustering.k),
        "Stitches": str(len(result.labeled)),
        "GridSize": f"{result.labeled.width}x{result.labeled.height}",
    }

    raster = render.render_pattern_image(result.labeled, cell_size=effective_cell_size, label_cells=label_cells)
    file_utils.save_stitch_png(raster, output_paths[StitchFile.PATTERN_RASTER],
                               command_line_invocation=command_line_str, additional_metadata=pattern_metadata)
    typer.echo(f"Raster pattern saved to: {output_paths[StitchFile.PATTERN_RASTER]}")

    if not raster_only:
        file_utils.save_pattern_svg(output_paths[StitchFile.PATTERN_VECTOR], result.labeled,
                                    cell_size=effective_cell_size, command_line_invocation=command_line_str,
                                    additional_metadata=pattern_metadata)
        typer.echo(f"SVG pattern saved to: {output_paths[StitchFile.PATTERN_VECTOR]}")

    file_utils.write_matches_csv(output_paths[StitchFile.PALETTE_CSV], result.matches, counts)
    typer.echo(f"Palette table saved to: {output_paths[StitchFile.PALETTE_CSV]}")

    if not skip_legend:
        # One swatch per thread; clusters sharing a code are listed in the palette table.
        legend_matches, seen_codes = [], set()
        for match in result.matches:
            if match.palette_code in counts and match.palette_code not in seen_codes:
                seen_codes.add(match.palette_code)
                legend_matches.append(match)
        legend_image = legend.create_legend_image(legend_matches, counts=counts, swatch_size=40, padding=10)
        if legend_image:
            file_utils.save_stitch_png(legend_image, output_paths[StitchFile.PALETTE_LEGEND],
                                       command_line_invocation=command_line_str,
                                       additional_metadata={"Stitchgen-FileType": "Palette Legend",
                                                            "PaletteColors": str(len(counts))})
            typer.echo(f"Palette legend saved to: {output_paths[StitchFile.PALETTE_LEGEND]}")
        else:
            typer.secho("Warning: Legend skipped, every stitch was filtered out.", fg=typer.colors.YELLOW)

    typer.secho("\nProcessing complete!", fg=typer.colors.GREEN)
    typer.echo(f"Outputs in: {output_dir.resolve()}")


if __name__ == "__main__":
    rich.traceback.install(show_locals=False, suppress=[typer])
    app()
