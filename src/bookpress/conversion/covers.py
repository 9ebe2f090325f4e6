"""Print cover variants and their geometry.

All dimensions are in inches. Wrap-around covers are back + spine + front;
the spine width depends on the page count of the merged content:

- CaseWrap (hardcover): stepped spine from ``SPINE_BREAKPOINTS``,
  cover width = spine + 18.75
- Amazon: linear, spine = pages * 0.002252, cover adds 0.375 + 17
- PerfectBound: linear, spine = pages / 444 + 0.06 (floored to
  thousandths), cover adds 17.25
- CoilBound: no spine, fixed 17.25 wide
- Main: a single 8.5 x 11 front cover
"""

import math
from dataclasses import dataclass
from typing import List, Optional, Tuple

from ..content import ContentNode
from . import templates

# (page count threshold, spine width): a book with more pages than the
# threshold gets at least that spine.
SPINE_BREAKPOINTS: List[Tuple[int, float]] = [
    (24, 0.25),
    (84, 0.5),
    (140, 0.625),
    (169, 0.6875),
    (195, 0.75),
    (223, 0.8125),
    (251, 0.875),
    (279, 0.9375),
    (307, 1.0),
    (335, 1.0625),
    (361, 1.125),
    (389, 1.1875),
    (417, 1.25),
    (445, 1.3125),
    (473, 1.375),
    (501, 1.4375),
    (529, 1.5),
    (557, 1.5625),
    (582, 1.625),
    (611, 1.6875),
    (639, 1.75),
    (667, 1.8125),
    (695, 1.875),
    (723, 1.9375),
    (751, 2.0),
    (779, 2.0625),
    (800, 2.125),
]

AMAZON_INCHES_PER_PAGE = 0.002252
AMAZON_COVER_BASE = 0.375 + 17
HARDCOVER_WRAP = 18.75
PAPERBACK_WRAP = 17.25
MAIN_COVER_SIZE = (8.5, 11.0)


@dataclass(frozen=True)
class CoverVariant:
    name: str
    extra_padding: bool = False
    hardcover: bool = False
    thin: bool = False
    front_only: bool = False
    linear_pages: bool = False


AMAZON = CoverVariant("Amazon", linear_pages=True)
CASE_WRAP = CoverVariant("CaseWrap", extra_padding=True, hardcover=True)
COIL_BOUND = CoverVariant("CoilBound", extra_padding=True, thin=True)
MAIN = CoverVariant("Main", front_only=True)
PERFECT_BOUND = CoverVariant("PerfectBound", extra_padding=True)

COVER_VARIANTS = (AMAZON, CASE_WRAP, COIL_BOUND, MAIN, PERFECT_BOUND)


def breakpoint_spine(num_pages: int) -> Optional[float]:
    """Spine for the largest threshold below ``num_pages``; None for very thin books."""
    width = None
    for threshold, value in SPINE_BREAKPOINTS:
        if num_pages > threshold:
            width = value
    return width


def _paperback_spine(num_pages: int) -> float:
    return math.floor((num_pages / 444 + 0.06) * 1000) / 1000


def spine_width(variant: CoverVariant, num_pages: Optional[int]) -> float:
    if variant.thin or variant.front_only or num_pages is None:
        return 0.0
    if variant.linear_pages:
        return num_pages * AMAZON_INCHES_PER_PAGE
    if variant.hardcover:
        stepped = breakpoint_spine(num_pages)
        if stepped is not None:
            return stepped
    return _paperback_spine(num_pages)


def cover_width(variant: CoverVariant, num_pages: Optional[int]) -> float:
    if variant.front_only or num_pages is None:
        return MAIN_COVER_SIZE[0]
    if variant.thin:
        return PAPERBACK_WRAP
    if variant.linear_pages:
        return num_pages * AMAZON_INCHES_PER_PAGE + AMAZON_COVER_BASE
    if variant.hardcover:
        stepped = breakpoint_spine(num_pages)
        if stepped is not None:
            return stepped + HARDCOVER_WRAP
    return math.floor((num_pages / 444 + 0.06 + PAPERBACK_WRAP) * 1000) / 1000


def cover_height(variant: CoverVariant, num_pages: Optional[int]) -> float:
    if variant.front_only or num_pages is None:
        return MAIN_COVER_SIZE[1]
    return 12.75 if variant.hardcover else 11.25


def cover_html(node: ContentNode, variant: CoverVariant, num_pages: Optional[int], main_color: str) -> str:
    """Full HTML document for one cover."""
    parts = [templates.cover_styles(main_color)]
    if variant.front_only or num_pages is None:
        parts.append(templates.front_cover(node))
    else:
        parts.append(templates.back_cover(node))
        if not variant.thin:
            parts.append(templates.spine(node, spine_width(variant, num_pages)))
        parts.append(templates.front_cover(node))
    if variant.extra_padding:
        parts.append(templates.COVER_EXTRA_PADDING)
    return "".join(parts)
