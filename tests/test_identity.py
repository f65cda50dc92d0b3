import random

from services.identity_service import ADJECTIVES, BASE_PALETTE, NOUNS, IdentityAllocator
from utils.colors import hex_to_hsl, rotate_hue


def allocate_many(count: int):
    allocator = IdentityAllocator(random.Random(1))
    colors = []
    names = []
    for _ in range(count):
        name, color = allocator.allocate(colors)
        names.append(name)
        colors.append(color)
    return names, colors


def test_names_are_adjective_noun():
    names, _ = allocate_many(20)
    for name in names:
        adjective, noun = name.split(" ")
        assert adjective in ADJECTIVES
        assert noun in NOUNS


def test_first_eight_colors_come_from_base_palette():
    _, colors = allocate_many(8)
    assert len(set(colors)) == 8
    assert set(colors) == set(BASE_PALETTE)


def test_colors_stay_unique_past_the_palette():
    _, colors = allocate_many(120)
    assert len(set(colors)) == 120


def test_palette_extension_keeps_saturation_and_lightness():
    _, colors = allocate_many(9)
    extra = colors[8]
    assert extra not in BASE_PALETTE
    base = BASE_PALETTE[0]
    assert extra == rotate_hue(base, 30)
    _, s, l = hex_to_hsl(extra)
    _, base_s, base_l = hex_to_hsl(base)
    assert abs(s - base_s) <= 1 and abs(l - base_l) <= 1


def test_freed_base_color_is_reused():
    allocator = IdentityAllocator(random.Random(2))
    in_use = [c for c in BASE_PALETTE if c != BASE_PALETTE[3]]
    assert allocator.unique_color(in_use) == BASE_PALETTE[3]
