import colorsys
from typing import Tuple


def hex_to_hsl(hex_color: str) -> Tuple[int, int, int]:
    """Parse ``#RRGGBB`` into (hue 0-359, saturation 0-100, lightness 0-100), rounded."""
    value = hex_color.lstrip("#")
    r, g, b = (int(value[i:i + 2], 16) / 255 for i in (0, 2, 4))
    h, l, s = colorsys.rgb_to_hls(r, g, b)
    return round(h * 360) % 360, round(s * 100), round(l * 100)


def hsl_to_hex(h: float, s: float, l: float) -> str:
    """Inverse of hex_to_hsl; returns upper-case ``#RRGGBB``."""
    r, g, b = colorsys.hls_to_rgb((h % 360) / 360, l / 100, s / 100)
    return "#" + "".join(f"{round(c * 255):02X}" for c in (r, g, b))


def rotate_hue(hex_color: str, degrees: int) -> str:
    """Rotate a colour's hue, keeping saturation and lightness."""
    h, s, l = hex_to_hsl(hex_color)
    return hsl_to_hex((h + degrees) % 360, s, l)
