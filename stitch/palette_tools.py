import csv
import json
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Mapping, Optional, Sequence, Union

import numpy as np
from PIL import Image, ImageColor
from sklearn.cluster import KMeans

from stitch.color import Color, is_hex_color
from stitch.errors import PaletteLookupError

IMAGE_SUFFIXES = {".png", ".jpg", ".jpeg", ".gif", ".bmp", ".tif", ".tiff", ".webp"}


@dataclass(frozen=True)
class PaletteEntry:
    code: str
    hex: str
    name: Optional[str] = None


@dataclass(frozen=True)
class PaletteMatch:
    """The palette entry chosen for one cluster centroid."""
    cluster_id: int
    centroid_color: Color
    palette_code: str
    palette_hex: str


class FixedPalette:
    """
    Nearest-color oracle over a finite palette (floss, beads, paints...).

    ``nearest`` picks the entry with the smallest Euclidean distance in 8-bit
    RGB. Ties go to the entry listed first, so answers are deterministic for a
    given palette file.
    """

    def __init__(self, entries: Sequence[PaletteEntry], name: str = "custom"):
        if not entries:
            raise ValueError("A palette needs at least one entry.")
        seen = set()
        for entry in entries:
            if entry.code in seen:
                raise ValueError(f"Duplicate palette code: {entry.code!r}")
            if not is_hex_color(entry.hex):
                raise ValueError(f"Palette entry {entry.code!r} has malformed hex {entry.hex!r}")
            seen.add(entry.code)
        self.name = name
        self.entries: List[PaletteEntry] = [
            PaletteEntry(entry.code, entry.hex.lower(), entry.name) for entry in entries
        ]
        self._by_code = {entry.code: entry for entry in self.entries}
        self._rgb = np.array(
            [Color.from_hex(entry.hex).rgb255 for entry in self.entries], dtype=np.float64
        )

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[PaletteEntry]:
        return iter(self.entries)

    def __repr__(self) -> str:
        return f"FixedPalette(name={self.name!r}, entries={len(self.entries)})"

    def get(self, code: str) -> PaletteEntry:
        try:
            return self._by_code[code]
        except KeyError:
            raise PaletteLookupError(f"palette {self.name!r} has no code {code!r}") from None

    def nearest(self, color) -> PaletteEntry:
        """
        Return the palette entry closest to ``color``.

        Args:
            color: A Color, a '#rrggbb' string, or an (R, G, B) triple in [0, 1].

        Raises:
            PaletteLookupError: if ``color`` cannot be read as an RGB color.
        """
        target = np.array(_coerce_color(color).rgb255, dtype=np.float64)
        dists = np.linalg.norm(self._rgb - target[None, :], axis=1)
        return self.entries[int(np.argmin(dists))]

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> "FixedPalette":
        """
        Load a palette from JSON.

        Accepts either ``{"label_to_hex": {"310": "#000000", ...}}`` or a list
        of ``{"code": ..., "hex": ..., "name": ...}`` objects.
        """
        path = Path(path)
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)

        if isinstance(data, dict) and "label_to_hex" in data:
            entries = [PaletteEntry(str(code), str(hexval)) for code, hexval in data["label_to_hex"].items()]
        elif isinstance(data, list):
            try:
                entries = [PaletteEntry(str(item["code"]), str(item["hex"]), item.get("name")) for item in data]
            except (KeyError, TypeError, AttributeError) as e:
                raise ValueError(f"{path}: every palette item needs 'code' and 'hex' ({e})") from e
        else:
            raise ValueError(f"{path}: expected a 'label_to_hex' object or a list of entries")
        return cls(entries, name=path.stem)

    @classmethod
    def from_csv(cls, path: Union[str, Path]) -> "FixedPalette":
        """Load a palette from a CSV file with ``code,hex[,name]`` columns."""
        path = Path(path)
        # utf-8-sig strips the byte order mark spreadsheet exports start with
        with open(path, "r", encoding="utf-8-sig", newline="") as f:
            reader = csv.DictReader(f)
            if not reader.fieldnames or not {"code", "hex"} <= set(reader.fieldnames):
                raise ValueError(f"{path}: CSV palette needs 'code' and 'hex' columns")
            entries = []
            for row in reader:
                code = (row.get("code") or "").strip()
                hexval = (row.get("hex") or "").strip()
                if not code and not hexval:
                    continue
                if not code or not hexval:
                    raise ValueError(f"{path}: row {reader.line_num} needs code and hex")
                entries.append(PaletteEntry(code, hexval, (row.get("name") or "").strip() or None))
        return cls(entries, name=path.stem)

    @classmethod
    def from_image(cls, path: Union[str, Path], max_colors: int = 24) -> "FixedPalette":
        """Build a palette from the dominant colors of a swatch card photo."""
        swatches = extract_palette_from_image(path, max_colors=max_colors)
        entries = []
        for color in swatches:
            hexval = Color.from_rgb255(color).hex
            # Coincident k-means centers collapse into one entry.
            if any(entry.hex == hexval for entry in entries):
                continue
            entries.append(PaletteEntry(str(len(entries) + 1), hexval))
        return cls(entries, name=Path(path).stem)

    @classmethod
    def named_colors(cls) -> "FixedPalette":
        """Pillow's table of CSS color names, in alphabetical order."""
        entries = [
            PaletteEntry(name, "#{:02x}{:02x}{:02x}".format(*ImageColor.getrgb(name)[:3]), name)
            for name in sorted(ImageColor.colormap)
        ]
        return cls(entries, name="named")


def _coerce_color(color) -> Color:
    if isinstance(color, Color):
        return color
    try:
        if isinstance(color, str):
            return Color.from_hex(color)
        r, g, b = (float(c) for c in color)
        return Color(r, g, b)
    except (TypeError, ValueError) as e:
        raise PaletteLookupError(f"cannot read {color!r} as an RGB color ({e})") from e


def extract_palette_from_image(path, max_colors=24, random_state=42):
    """
    Extract a fixed palette from an image (e.g. a floss card or paint tray).

    Args:
        path (str): Path to the palette image.
        max_colors (int): Maximum number of colors to extract.
        random_state (int): Seed for the k-means fit.

    Returns:
        np.ndarray: Array of RGB colors (uint8) with shape (N, 3).
    """
    image = Image.open(path).convert("RGB")
    image = image.resize((100, 100))  # Downsample for speed and uniformity
    pixels = np.array(image).reshape(-1, 3).astype(np.float64)

    kmeans = KMeans(n_clusters=max_colors, random_state=random_state, n_init="auto")
    kmeans.fit(pixels)
    return np.clip(np.rint(kmeans.cluster_centers_), 0, 255).astype(np.uint8)


def load_palette(source: Union[str, Path]) -> FixedPalette:
    """
    Resolve a ``--palette`` argument to a FixedPalette.

    ``"named"`` selects Pillow's CSS color names; otherwise ``source`` is a
    .json, .csv or image file.
    """
    if str(source).lower() == "named":
        return FixedPalette.named_colors()
    path = Path(source)
    if not path.is_file():
        raise FileNotFoundError(f"Palette file not found: {path}")
    suffix = path.suffix.lower()
    if suffix == ".json":
        return FixedPalette.from_json(path)
    if suffix == ".csv":
        return FixedPalette.from_csv(path)
    if suffix in IMAGE_SUFFIXES:
        return FixedPalette.from_image(path)
    raise ValueError(f"Unsupported palette file type '{suffix}'. Use .json, .csv or an image.")


def _read_answer(answer, cluster_id: int):
    if isinstance(answer, Mapping):
        code, hexval = answer.get("code"), answer.get("hex")
    else:
        code, hexval = getattr(answer, "code", None), getattr(answer, "hex", None)
    if code is None or str(code) == "" or not is_hex_color(hexval):
        raise PaletteLookupError(
            f"oracle answer for cluster {cluster_id} lacks a code and '#rrggbb' hex: {answer!r}"
        )
    return str(code), hexval.lower()


def resolve_palette(
    centroids: Mapping[int, Color],
    oracle,
    workers: Optional[int] = None,
) -> List[PaletteMatch]:
    """
    Look up the closest palette entry for every cluster centroid.

    One PaletteMatch is produced per cluster id, in ascending id order. Two
    centroids may resolve to the same entry; both rows are kept since that
    points at near-duplicate clusters the operator may want to inspect.

    Args:
        centroids: Mapping of cluster id to centroid Color.
        oracle: Object with ``nearest(color)`` returning something exposing
            ``code`` and ``hex`` (attributes or mapping keys).
        workers: Issue lookups on this many threads when greater than 1.

    Raises:
        PaletteLookupError: if the oracle fails or returns a malformed answer.
    """
    cluster_ids = sorted(centroids)

    def lookup(cluster_id: int) -> PaletteMatch:
        color = centroids[cluster_id]
        try:
            answer = oracle.nearest(color)
        except PaletteLookupError as e:
            raise PaletteLookupError(f"cluster {cluster_id}: {e.message}") from e
        except Exception as e:
            raise PaletteLookupError(f"oracle failed for cluster {cluster_id} ({color!r}): {e}") from e
        code, hexval = _read_answer(answer, cluster_id)
        return PaletteMatch(cluster_id=cluster_id, centroid_color=color, palette_code=code, palette_hex=hexval)

    if workers and workers > 1:
        with ThreadPoolExecutor(max_workers=workers) as executor:
            return list(executor.map(lookup, cluster_ids))
    return [lookup(cluster_id) for cluster_id in cluster_ids]


def shared_palette_codes(matches: Sequence[PaletteMatch]) -> Dict[str, List[int]]:
    """Palette codes chosen by more than one cluster, mapped to those cluster ids."""
    by_code: Dict[str, List[int]] = OrderedDict()
    for match in matches:
        by_code.setdefault(match.palette_code, []).append(match.cluster_id)
    return {code: ids for code, ids in by_code.items() if len(ids) > 1}
