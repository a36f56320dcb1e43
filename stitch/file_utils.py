import csv
import re
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Dict, Mapping, Optional, Sequence
from xml.etree.ElementTree import Element, SubElement

import svgwrite
from PIL import Image, PngImagePlugin
from svgwrite.base import BaseElement

from stitch.assemble import LabeledPixelTable
from stitch.palette_tools import PaletteMatch
from stitch.quantize import ClusteringTrial

SOFTWARE_TAG = "stitchgen"
PNG_METADATA_PREFIX = "stitchgen:"
STITCHGEN_NS_URI = "urn:stitchgen:metadata"


class Verbatim(BaseElement):
    """Pre-serialized XML (e.g. a <metadata> block) inserted into an svgwrite drawing as-is."""

    def __init__(self, xml_string="", elementname="metadata", **kwargs_for_base_element):
        self.elementname = elementname
        super(Verbatim, self).__init__(**kwargs_for_base_element)
        self.xml_string = xml_string

    def write(self, fileobj, indent=0, newline='\n', options=None):
        if self.debug:
            # Raises KeyError for element names the profile does not know
            self.validator.check_all_svg_attribute_values(self.elementname, {})
        fileobj.write(self.xml_string)

    def get_xml(self):
        # dwg.save(pretty=True) appends this to an ET tree, so it must be an Element.
        return ET.fromstring(self.xml_string)


def _clean_key(key: str) -> str:
    key_clean = re.sub(r'\s+', '_', key)
    key_clean = re.sub(r'[^a-zA-Z0-9_.-]', '', key_clean)
    if not key_clean or not re.match(r'^[a-zA-Z_]', key_clean):
        key_clean = "stitchgen_" + key_clean
    # PNG tEXt keywords are limited to 79 bytes, leave room for the prefix
    return key_clean[:70]


def _ensure_parent(output_path) -> Path:
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    return output_path


def save_stitch_png(
    image_to_save: Image.Image,
    output_path: Path,
    command_line_invocation: Optional[str] = None,
    additional_metadata: Optional[Dict[str, str]] = None,
):
    """
    Saves a PIL Image object as a PNG file, embedding stitchgen metadata as tEXt chunks.
    """
    output_path = _ensure_parent(output_path)

    png_info = PngImagePlugin.PngInfo()
    png_info.add_text("Software", SOFTWARE_TAG)
    if command_line_invocation:
        png_info.add_text(f"{PNG_METADATA_PREFIX}command_line", command_line_invocation)
    for key, value in (additional_metadata or {}).items():
        png_info.add_text(f"{PNG_METADATA_PREFIX}{_clean_key(key)}", str(value))

    image_to_save.save(output_path, "PNG", pnginfo=png_info)


def _metadata_xml(command_line_invocation, additional_metadata) -> str:
    ET.register_namespace(SOFTWARE_TAG, STITCHGEN_NS_URI)
    root = Element('metadata')
    root.set('id', 'stitchgenMetadata')
    container = SubElement(root, f'{{{STITCHGEN_NS_URI}}}stitchgenMetadata')
    SubElement(container, f'{{{STITCHGEN_NS_URI}}}Software').text = SOFTWARE_TAG
    if command_line_invocation:
        SubElement(container, f'{{{STITCHGEN_NS_URI}}}CommandLineInvocation').text = command_line_invocation
    for key, value in (additional_metadata or {}).items():
        SubElement(container, f'{{{STITCHGEN_NS_URI}}}{_clean_key(key)}').text = str(value)
    return ET.tostring(root, encoding='unicode', method='xml')


def save_pattern_svg(
    output_path: Path,
    labeled: LabeledPixelTable,
    cell_size: int = 10,
    grid_color: str = "#b0b0b0",
    command_line_invocation: Optional[str] = None,
    additional_metadata: Optional[Dict[str, str]] = None,
):
    """
    Write the stitch grid as SVG: one rect per labeled pixel, grouped by palette code.
    """
    output_path = _ensure_parent(output_path)
    width, height = labeled.width * cell_size, labeled.height * cell_size

    dwg = svgwrite.Drawing(
        filename=str(output_path),
        size=(f"{width}px", f"{height}px"),
        profile='full',
    )
    dwg.add(Verbatim(
        xml_string=_metadata_xml(command_line_invocation, additional_metadata),
        elementname='metadata',
        profile=dwg.profile,
        debug=dwg.debug,
    ))

    groups = {}
    for row in labeled:
        group = groups.get(row.palette_code)
        if group is None:
            group = dwg.g(fill=row.palette_hex)
            group.set_desc(title=row.palette_code)
            groups[row.palette_code] = group
        group.add(dwg.rect(insert=(row.x * cell_size, row.y * cell_size), size=(cell_size, cell_size)))
    for group in groups.values():
        dwg.add(group)

    grid = dwg.g(id="grid", style=f"stroke:{grid_color}; stroke-width:1px;")
    for gx in range(labeled.width + 1):
        grid.add(dwg.line(start=(gx * cell_size, 0), end=(gx * cell_size, height)))
    for gy in range(labeled.height + 1):
        grid.add(dwg.line(start=(0, gy * cell_size), end=(width, gy * cell_size)))
    dwg.add(grid)

    dwg.save(pretty=True)


def write_matches_csv(output_path: Path, matches: Sequence[PaletteMatch], counts: Optional[Mapping[str, int]] = None):
    """One row per cluster: id, centroid hex, palette code/hex and stitches using that code."""
    output_path = _ensure_parent(output_path)
    with open(output_path, "w", encoding="utf-8", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(["cluster_id", "centroid_hex", "palette_code", "palette_hex", "stitches"])
        for match in matches:
            writer.writerow([
                match.cluster_id,
                match.centroid_color.hex,
                match.palette_code,
                match.palette_hex,
                (counts or {}).get(match.palette_code, 0),
            ])


def write_scree_csv(output_path: Path, trials: Sequence[ClusteringTrial]):
    output_path = _ensure_parent(output_path)
    with open(output_path, "w", encoding="utf-8", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(["k", "total_withinss", "total_ss", "between_ratio", "centroids"])
        for trial in trials:
            writer.writerow([
                trial.k,
                f"{trial.total_withinss:.6f}",
                f"{trial.total_ss:.6f}",
                f"{trial.between_ratio:.6f}",
                " ".join(color.hex for color in trial.centroids),
            ])
