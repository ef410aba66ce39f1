"""Size x color variant generation with exact stock distribution.

Each size's total stock is split across the item's colors with random
weights. Rounding drift is corrected one unit at a time, so the split always
sums to the declared total. Regeneration replaces the whole variant list.
"""

import logging
from typing import Dict, List, Sequence, Tuple

import numpy as np

from catalogsync.pipeline.models import CatalogItem, ColorOption, Variant

# Configure module logger
logger = logging.getLogger(__name__)

SIZES: Tuple[str, ...] = ("s", "m", "l", "xl")
SIZE_PRICE_ADJUSTMENT: Dict[str, float] = {"s": 0.0, "m": 0.01, "l": 0.02, "xl": 0.03}
COLOR_PRICE_STEP = 0.01
MAX_COLOR_ADJUSTMENT = 0.03

DEFAULT_PALETTE: Tuple[ColorOption, ...] = (
    ColorOption(name="Black", hex_code="#000000"),
    ColorOption(name="White", hex_code="#FFFFFF"),
    ColorOption(name="Gray", hex_code="#808080"),
    ColorOption(name="Navy", hex_code="#001F3F"),
)
MIN_COLORS = 3
MAX_COLORS = 6

# Stock weight shape: u ** exponent + floor, with u uniform in [0, 1)
WEIGHT_EXPONENT = 1.5
WEIGHT_FLOOR = 0.2

DEFAULT_PRICE_UNIT = 1.0


def pad_colors(
    colors: Sequence[ColorOption],
    palette: Sequence[ColorOption] = DEFAULT_PALETTE,
    minimum: int = MIN_COLORS,
    maximum: int = MAX_COLORS,
) -> List[ColorOption]:
    """Deduplicate colors by hex code, pad from the palette, then cap."""
    result: List[ColorOption] = []
    seen = set()

    def add(color: ColorOption) -> None:
        code = color.hex_code.lower()
        if code not in seen:
            seen.add(code)
            result.append(color)

    for color in colors:
        add(color)
    for color in palette:
        if len(result) >= minimum:
            break
        add(color)
    return result[:maximum]


def distribute_stock(total: int, count: int, rng: np.random.Generator) -> List[int]:
    """Split ``total`` units into ``count`` non-negative integers.

    Weights are ``u ** 1.5 + 0.2`` for uniform ``u``, normalized to the
    total and rounded. Random +/-1 nudges then remove the rounding drift,
    so the result always sums to ``total`` exactly.

    Args:
        total: Units to distribute.
        count: Number of shares.
        rng: Random source; the same seed gives the same split.

    Returns:
        ``count`` integers summing to ``total``.

    Raises:
        ValueError: If ``count`` is not positive or ``total`` is negative.
    """
    if count <= 0:
        raise ValueError("count must be positive")
    if total < 0:
        raise ValueError("total must be non-negative")
    if total == 0:
        return [0] * count

    weights = rng.random(count) ** WEIGHT_EXPONENT + WEIGHT_FLOOR
    shares = np.rint(weights / weights.sum() * total).astype(int)

    drift = total - int(shares.sum())
    while drift != 0:
        i = int(rng.integers(count))
        if drift > 0:
            shares[i] += 1
            drift -= 1
        elif shares[i] > 0:
            shares[i] -= 1
            drift += 1

    return [int(share) for share in shares]


def round_to_unit(value: float, unit: float = DEFAULT_PRICE_UNIT) -> float:
    if unit <= 0:
        raise ValueError("price unit must be positive")
    return round(round(value / unit) * unit, 2)


def variant_price(
    base_price: float,
    size: str,
    color_index: int,
    unit: float = DEFAULT_PRICE_UNIT,
) -> float:
    """Base price adjusted for size and color position, rounded to ``unit``."""
    color_adjustment = min(color_index * COLOR_PRICE_STEP, MAX_COLOR_ADJUSTMENT)
    factor = 1 + SIZE_PRICE_ADJUSTMENT.get(size, 0.0) + color_adjustment
    return round_to_unit(base_price * factor, unit)


def size_totals_for(item: CatalogItem) -> Dict[str, int]:
    """Per-size stock totals: existing variant stock if any, else legacy totals."""
    if item.variants:
        totals = {size: 0 for size in SIZES}
        for variant in item.variants:
            if variant.size in totals:
                totals[variant.size] += max(variant.stock, 0)
        return totals
    return {size: max(int(item.size_stock.get(size, 0)), 0) for size in SIZES}


def generate_variants(
    item: CatalogItem,
    rng: np.random.Generator,
    price_unit: float = DEFAULT_PRICE_UNIT,
) -> Tuple[List[Variant], List[ColorOption]]:
    """Build the full size x color variant list for an item.

    Returns:
        ``(variants, colors)`` where ``colors`` is the padded color list the
        variants were built from.
    """
    colors = pad_colors(item.colors)
    totals = size_totals_for(item)
    splits = {size: distribute_stock(totals[size], len(colors), rng) for size in SIZES}

    variants = [
        Variant(
            size=size,
            color=color.hex_code,
            price=variant_price(item.price, size, color_index, price_unit),
            stock=splits[size][color_index],
        )
        for color_index, color in enumerate(colors)
        for size in SIZES
    ]
    return variants, colors


def variant_patch(
    item: CatalogItem,
    rng: np.random.Generator,
    price_unit: float = DEFAULT_PRICE_UNIT,
) -> Dict[str, object]:
    """Patch replacing an item's variants, colors and total stock."""
    variants, colors = generate_variants(item, rng, price_unit)
    return {
        "variants": [variant.model_dump(mode="json") for variant in variants],
        "colors": [color.model_dump(mode="json") for color in colors],
        "count_in_stock": sum(variant.stock for variant in variants),
    }
