# tests/test_cli.py
import csv
import os
import subprocess
import sys
from pathlib import Path

from PIL import Image, ImageDraw

REPO_ROOT = Path(__file__).resolve().parent.parent


def create_dummy_image(path: Path):
    img = Image.new("RGB", (32, 32), color=(150, 120, 200))
    draw = ImageDraw.Draw(img)
    draw.rectangle([(6, 6), (18, 18)], fill=(200, 50, 50))
    draw.ellipse([(12, 12), (26, 26)], fill=(50, 200, 50))
    img.save(path)


def run_stitchgen(*args, env=None):
    return subprocess.run(
        [sys.executable, "stitchgen.py", *[str(a) for a in args]],
        capture_output=True,
        text=True,
        cwd=REPO_ROOT,
        env={**os.environ, **(env or {})},
    )


def test_pattern_cli_with_all_outputs(tmp_path):
    input_image = tmp_path / "dummy_input.png"
    create_dummy_image(input_image)
    output_dir = tmp_path / "output"

    result = run_stitchgen("pattern", input_image, output_dir, "--num-colors", "3", "--seed", "7",
                           "--restarts", "5", "--cell-size", "4")

    assert result.returncode == 0, f"CLI failed: {result.stdout}\n{result.stderr}"
    for filename in ["stitch-pattern.png", "stitch-pattern.svg", "stitch-legend.png", "stitch-palette.csv"]:
        assert (output_dir / filename).exists(), f"Expected output file not found: {filename}"
    assert "Processing complete" in result.stdout

    with open(output_dir / "stitch-palette.csv", newline="") as f:
        rows = list(csv.DictReader(f))
    assert len(rows) == 3
    assert sum(int(r["stitches"]) for r in {r["palette_code"]: r for r in rows}.values()) == 32 * 32

    with Image.open(output_dir / "stitch-pattern.png") as im:
        assert im.size == (32 * 4 + 1, 32 * 4 + 1)
        assert im.info["stitchgen:Clusters"] == "3"


def test_pattern_cli_refuses_to_overwrite(tmp_path):
    input_image = tmp_path / "dummy_input.png"
    create_dummy_image(input_image)
    output_dir = tmp_path / "output"
    args = ("pattern", input_image, output_dir, "-k", "2", "--seed", "1", "--restarts", "2",
            "--raster-only", "--skip-legend")

    assert run_stitchgen(*args).returncode == 0
    second = run_stitchgen(*args)
    assert second.returncode == 1
    assert "already exist" in second.stdout
    assert run_stitchgen(*args, "--yes").returncode == 0


def test_pattern_cli_with_csv_palette_and_exclusion(tmp_path):
    input_image = tmp_path / "dummy_input.png"
    create_dummy_image(input_image)
    palette_file = tmp_path / "floss.csv"
    palette_file.write_text("code,hex,name\n209,#a37bba,Lavender\n666,#e31d42,Red\n700,#07731b,Green\n")
    output_dir = tmp_path / "output"

    result = run_stitchgen("pattern", input_image, output_dir, "-k", "3", "--seed", "3",
                           "--palette", palette_file, "--exclude", "209", "--raster-only")

    assert result.returncode == 0, f"CLI failed: {result.stdout}\n{result.stderr}"
    with open(output_dir / "stitch-palette.csv", newline="") as f:
        rows = {r["palette_code"]: r for r in csv.DictReader(f)}
    assert set(rows) == {"209", "666", "700"}
    assert rows["209"]["stitches"] == "0"


def test_pattern_cli_rejects_k_outside_scan_range(tmp_path):
    input_image = tmp_path / "dummy_input.png"
    create_dummy_image(input_image)

    result = run_stitchgen("pattern", input_image, tmp_path / "out", "-k", "2", "--k-min", "5", "--k-max", "10")

    assert result.returncode == 1
    assert "outside the configured scan range" in result.stdout


def test_scan_cli_writes_scree_outputs(tmp_path):
    input_image = tmp_path / "dummy_input.png"
    create_dummy_image(input_image)
    output_dir = tmp_path / "scan"

    result = run_stitchgen("scan", input_image, output_dir, "--k-min", "2", "--k-max", "4", "--seed", "0")

    assert result.returncode == 0, f"CLI failed: {result.stdout}\n{result.stderr}"
    assert (output_dir / "scan-scree.csv").exists()
    assert (output_dir / "scan-scree.png").exists()
    with open(output_dir / "scan-scree.csv", newline="") as f:
        assert [r["k"] for r in csv.DictReader(f)] == ["2", "3", "4"]


def test_scan_cli_refuses_to_overwrite_before_scanning(tmp_path):
    input_image = tmp_path / "dummy_input.png"
    create_dummy_image(input_image)
    output_dir = tmp_path / "scan"
    output_dir.mkdir()
    (output_dir / "scan-scree.csv").write_text("k\n")

    result = run_stitchgen("scan", input_image, output_dir, "--k-min", "2", "--k-max", "3")

    assert result.returncode == 1
    assert "Files already exist" in result.stdout
    assert "Scanning" not in result.stdout


def test_cli_reports_non_integer_seed_from_environment(tmp_path):
    input_image = tmp_path / "dummy_input.png"
    create_dummy_image(input_image)

    result = run_stitchgen("scan", input_image, "--k-min", "2", "--k-max", "3", env={"STITCHGEN_SEED": "abc"})

    assert result.returncode == 1
    assert "STITCHGEN_SEED" in result.stdout
    assert "Traceback" not in result.stderr


def test_pattern_cli_reports_unreadable_palette_image(tmp_path):
    input_image = tmp_path / "dummy_input.png"
    create_dummy_image(input_image)
    swatches = tmp_path / "swatches.png"
    swatches.write_bytes(b"not a png")

    result = run_stitchgen("pattern", input_image, tmp_path / "out", "-k", "3", "--palette", swatches)

    assert result.returncode == 1
    assert "Error loading palette" in result.stdout
    assert "Traceback" not in result.stderr


def test_stitchgen_cli_help_output():
    result = run_stitchgen("--help")
    assert result.returncode == 0
    assert "usage:" in result.stdout.lower()
