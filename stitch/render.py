from typing import Optional, Sequence

from PIL import Image, ImageDraw

from stitch.assemble import LabeledPixelTable
from stitch.legend import draw_centered_text, load_font, text_color_for
from stitch.quantize import ClusteringTrial

MAJOR_GRID_EVERY = 10


def render_pattern_image(
    labeled: LabeledPixelTable,
    cell_size: int = 10,
    background: str = "#ffffff",
    grid_color: str = "#b0b0b0",
    major_grid_color: str = "#404040",
    show_grid: bool = True,
    label_cells: bool = False,
    font_path: Optional[str] = None,
) -> Image.Image:
    """
    Draw the stitch grid: one ``cell_size`` square per source pixel.

    Cells missing from ``labeled`` (filtered or excluded) stay ``background``.
    A heavier line is drawn every ten stitches, as on printed charts. With
    ``label_cells`` each cell also shows its cluster id.
    """
    if cell_size < 1:
        raise ValueError(f"cell_size must be positive, got {cell_size}")

    width_px = labeled.width * cell_size + 1
    height_px = labeled.height * cell_size + 1
    image = Image.new("RGB", (width_px, height_px), color=background)
    draw = ImageDraw.Draw(image)
    font = load_font(font_path, max(6, int(cell_size * 0.6))) if label_cells else None

    for row in labeled:
        x0, y0 = row.x * cell_size, row.y * cell_size
        box = (x0, y0, x0 + cell_size, y0 + cell_size)
        draw.rectangle(box, fill=row.palette_hex)
        if font is not None:
            draw_centered_text(draw, box, str(row.cluster_id), font, text_color_for(row.palette_hex))

    if show_grid:
        for gx in range(labeled.width + 1):
            color = major_grid_color if gx % MAJOR_GRID_EVERY == 0 else grid_color
            draw.line([(gx * cell_size, 0), (gx * cell_size, height_px - 1)], fill=color)
        for gy in range(labeled.height + 1):
            color = major_grid_color if gy % MAJOR_GRID_EVERY == 0 else grid_color
            draw.line([(0, gy * cell_size), (width_px - 1, gy * cell_size)], fill=color)

    return image


def render_scree_image(
    trials: Sequence[ClusteringTrial],
    width: int = 480,
    height: int = 320,
    margin: int = 40,
    line_color: str = "#1f77b4",
) -> Optional[Image.Image]:
    """
    Plot total within-cluster sum of squares against k.

    Returns None when there are no trials.
    """
    if not trials:
        return None

    image = Image.new("RGB", (width, height), color=(255, 255, 255))
    draw = ImageDraw.Draw(image)
    font = load_font(None, 12)

    plot_w = width - 2 * margin
    plot_h = height - 2 * margin
    ks = [trial.k for trial in trials]
    values = [trial.total_withinss for trial in trials]
    k_min, k_max = min(ks), max(ks)
    v_max = max(values) or 1.0

    def to_xy(k, value):
        fx = 0.5 if k_max == k_min else (k - k_min) / (k_max - k_min)
        return margin + fx * plot_w, margin + plot_h - (value / v_max) * plot_h

    draw.line([(margin, margin), (margin, margin + plot_h), (margin + plot_w, margin + plot_h)], fill=(0, 0, 0))
    points = [to_xy(k, v) for k, v in zip(ks, values)]
    if len(points) > 1:
        draw.line(points, fill=line_color, width=2)
    for (px, py), k in zip(points, ks):
        draw.ellipse([px - 3, py - 3, px + 3, py + 3], fill=line_color)
        draw.text((px - 4, margin + plot_h + 6), str(k), fill=(0, 0, 0), font=font)

    draw.text((margin, margin // 3), "total within-cluster SS by k", fill=(0, 0, 0), font=font)
    return image
