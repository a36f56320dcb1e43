#!/usr/bin/env python3
import sys
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Dict

from PIL import Image

from stitch.file_utils import PNG_METADATA_PREFIX, STITCHGEN_NS_URI

SVG_NS = 'http://www.w3.org/2000/svg'


def read_png_metadata(filepath: Path) -> Dict[str, str]:
    """stitchgen tEXt entries of a PNG, with the prefix stripped."""
    with Image.open(filepath) as img:
        return {
            key[len(PNG_METADATA_PREFIX):]: value
            for key, value in img.info.items()
            if isinstance(key, str) and key.startswith(PNG_METADATA_PREFIX)
        }


def read_svg_metadata(filepath: Path) -> Dict[str, str]:
    """stitchgen elements inside the SVG's <metadata> block."""
    root = ET.parse(filepath).getroot()
    found: Dict[str, str] = {}
    for metadata_element in root.iter(f'{{{SVG_NS}}}metadata'):
        for custom_elem in metadata_element.iter():
            if custom_elem.tag.startswith(f'{{{STITCHGEN_NS_URI}}}') and len(custom_elem) == 0:
                local_name = custom_elem.tag.split('}', 1)[1]
                found[local_name] = (custom_elem.text or '').strip()
    return found


def main():
    if len(sys.argv) < 2:
        print("Usage: python extract_stitchgen_meta.py <filename.png_or_svg>")
        sys.exit(1)

    filepath = Path(sys.argv[1])
    if not filepath.is_file():
        print(f"Error: File not found: {filepath}")
        sys.exit(1)

    file_extension = filepath.suffix.lower()
    try:
        if file_extension == ".png":
            metadata = read_png_metadata(filepath)
        elif file_extension == ".svg":
            metadata = read_svg_metadata(filepath)
        else:
            print(f"Error: Unsupported file type '{file_extension}'. Please provide a .png or .svg file.")
            sys.exit(1)
    except ET.ParseError:
        print(f"Error: Could not parse SVG file (invalid XML): {filepath}")
        sys.exit(1)

    print(f"--- stitchgen metadata for {filepath.name} ---")
    if not metadata:
        print("  No stitchgen-specific metadata found.")
    for key, value in metadata.items():
        print(f"  {key}: {value}")
    print("-" * (30 + len(filepath.name)))


if __name__ == "__main__":
    main()
