import math
import re
from dataclasses import dataclass
from typing import Sequence, Tuple

_HEX_RE = re.compile(r"^#?([0-9a-fA-F]{6})$")

# Rec. 709 luma weights
_LUMA_WEIGHTS = (0.2126, 0.7152, 0.0722)


def _to_byte(value: float) -> int:
    return int(math.floor(value * 255 + 0.5))


@dataclass(frozen=True)
class Color:
    """An RGB color with channels normalized to [0, 1]."""
    R: float
    G: float
    B: float

    def __post_init__(self):
        for channel, value in zip("RGB", (self.R, self.G, self.B)):
            if not math.isfinite(value) or not (0.0 <= value <= 1.0):
                raise ValueError(f"Channel {channel}={value!r} is outside [0, 1].")

    @classmethod
    def from_hex(cls, hex_str: str) -> "Color":
        match = _HEX_RE.match(hex_str.strip()) if isinstance(hex_str, str) else None
        if not match:
            raise ValueError(f"Malformed hex color: {hex_str!r}. Expected '#rrggbb'.")
        digits = match.group(1)
        return cls.from_rgb255(tuple(int(digits[i:i + 2], 16) for i in (0, 2, 4)))

    @classmethod
    def from_rgb255(cls, rgb: Sequence[int]) -> "Color":
        r, g, b = (int(c) for c in rgb)
        return cls(r / 255.0, g / 255.0, b / 255.0)

    @property
    def rgb255(self) -> Tuple[int, int, int]:
        return (_to_byte(self.R), _to_byte(self.G), _to_byte(self.B))

    @property
    def hex(self) -> str:
        return "#{:02x}{:02x}{:02x}".format(*self.rgb255)

    @property
    def luminance(self) -> float:
        return sum(w * c for w, c in zip(_LUMA_WEIGHTS, self.as_tuple()))

    def as_tuple(self) -> Tuple[float, float, float]:
        return (self.R, self.G, self.B)


def is_hex_color(value) -> bool:
    return isinstance(value, str) and bool(_HEX_RE.match(value)) and value.startswith("#")
