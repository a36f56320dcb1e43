import os
from typing import Mapping, Optional, Sequence

from PIL import Image, ImageDraw, ImageFont

from stitch.color import Color
from stitch.palette_tools import PaletteMatch


def load_font(font_path: Optional[str] = None, font_size: int = 14):
    """TTF font from ``font_path`` if it loads, else Pillow's default font."""
    loaded_font = None
    try:
        if font_path and os.path.isfile(font_path):
            loaded_font = ImageFont.truetype(font_path, font_size)
    except IOError:
        pass  # Will fall through to default if custom font fails

    if not loaded_font:
        try:
            loaded_font = ImageFont.load_default(size=font_size)
        except TypeError:  # Older Pillow versions might not support size for load_default
            loaded_font = ImageFont.load_default()
    return loaded_font


def text_color_for(hex_color: str):
    """Black or white, whichever reads better on ``hex_color``."""
    return (0, 0, 0) if Color.from_hex(hex_color).luminance > 0.5 else (255, 255, 255)


def draw_centered_text(draw, box, text, font, fill):
    x0, y0, x1, y1 = box
    bbox = draw.textbbox((0, 0), text, font=font)
    text_w = bbox[2] - bbox[0]
    text_h = bbox[3] - bbox[1]
    # Offset by the bbox origin to account for the glyph's position relative to its anchor
    text_x = x0 + ((x1 - x0) - text_w) / 2.0 - bbox[0]
    text_y = y0 + ((y1 - y0) - text_h) / 2.0 - bbox[1]
    draw.text((text_x, text_y), text, fill=fill, font=font)


def create_legend_image(
    matches: Sequence[PaletteMatch],
    counts: Optional[Mapping[str, int]] = None,
    font_path=None,
    font_size=14,
    swatch_size=40,
    padding=10,
):
    """
    Creates a palette legend PIL Image object.

    One swatch per PaletteMatch, filled with the palette color and labeled
    with its palette code. When ``counts`` is given, a second line under each
    swatch shows the stitch count for that code.

    Args:
        matches: PaletteMatch rows, drawn in the order given.
        counts: Optional stitch counts keyed by palette code.
        font_path (str, optional): Path to a TTF font file.
        font_size (int): Font size for labels.
        swatch_size (int): Width/height of each color swatch.
        padding (int): Space around elements and between swatches.

    Returns:
        PIL.Image.Image: The generated legend image, or None if there are no matches.
    """
    num_swatches = len(matches)
    if num_swatches == 0:
        return None

    count_row = (font_size + padding) if counts is not None else 0
    width = (swatch_size * num_swatches) + (padding * (num_swatches + 1))
    height = swatch_size + (2 * padding) + count_row

    image = Image.new("RGB", (width, height), color=(255, 255, 255))
    draw = ImageDraw.Draw(image)
    font = load_font(font_path, font_size)

    for idx, match in enumerate(matches):
        x0 = padding + idx * (swatch_size + padding)
        y0 = padding
        swatch_box = (x0, y0, x0 + swatch_size, y0 + swatch_size)
        draw.rectangle(swatch_box, fill=match.palette_hex, outline=(0, 0, 0))
        draw_centered_text(draw, swatch_box, match.palette_code, font, text_color_for(match.palette_hex))

        if counts is not None:
            count_box = (x0, y0 + swatch_size, x0 + swatch_size, y0 + swatch_size + count_row)
            draw_centered_text(draw, count_box, str(counts.get(match.palette_code, 0)), font, (0, 0, 0))

    return image
