"""
Identity Allocator — pseudonymous display name + unique colour per connection.

Names are adjective × noun and may repeat. Colours never repeat within a room:
the eight base palette entries are handed out first, then hue-rotated variants
of the base colours (30° steps, then finer steps) until an unused hex is found.
"""
import logging
import random
from typing import Iterable, List, Optional, Set, Tuple

from utils.colors import rotate_hue

logger = logging.getLogger(__name__)

ADJECTIVES: List[str] = [
    "Swift", "Cozy", "Bold", "Calm", "Rusty", "Frosty", "Nimble", "Silent",
    "Happy", "Lucky", "Brave", "Wise", "Bright", "Wild", "Gentle", "Quick",
]
NOUNS: List[str] = [
    "Panda", "Fox", "Owl", "Wolf", "Bear", "Hawk", "Deer", "Lynx",
    "Moth", "Crow", "Dove", "Seal", "Crab", "Frog", "Ant", "Bee",
]

# Flexoki 200 accents
BASE_PALETTE: List[str] = [
    "#F89A8A",  # red
    "#F9AE77",  # orange
    "#ECCB60",  # yellow
    "#BEC97E",  # green
    "#87D3C3",  # cyan
    "#92BFDB",  # blue
    "#C4B9E0",  # purple
    "#F4A4C2",  # magenta
]

HUE_STEP = 30

# 30° variants first, then every remaining whole degree
_ROTATIONS: List[int] = list(range(HUE_STEP, 360, HUE_STEP)) + [
    d for d in range(1, 360) if d % HUE_STEP
]


class PaletteExhaustedError(RuntimeError):
    pass


class IdentityAllocator:
    def __init__(self, rng: Optional[random.Random] = None):
        self._rng = rng or random.Random()

    def random_name(self) -> str:
        return f"{self._rng.choice(ADJECTIVES)} {self._rng.choice(NOUNS)}"

    def unique_color(self, existing_colors: Iterable[str]) -> str:
        used: Set[str] = {c.upper() for c in existing_colors}

        for color in BASE_PALETTE:
            if color not in used:
                return color

        for degrees in _ROTATIONS:
            for base in BASE_PALETTE:
                variant = rotate_hue(base, degrees)
                if variant not in used:
                    return variant

        raise PaletteExhaustedError(f"No unused colour left ({len(used)} in use)")

    def allocate(self, existing_colors: Iterable[str]) -> Tuple[str, str]:
        return self.random_name(), self.unique_color(existing_colors)


identity_allocator = IdentityAllocator()
