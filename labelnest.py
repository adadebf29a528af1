#!/usr/bin/env python3
# Copyright (C) 2026  Lesco Design & Mfg. Co., Inc.
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.
"""
Label Nesting — MaxRects Sheet Packer + SVG/JSON Output
=======================================================
Packs rectangular labels (with quantities) onto as few sheets of paper as
possible, respecting a page margin, a gutter between labels and optional
90° rotation, then renders every sheet as an SVG page.

Architecture
------------
  FreeRect / FreeRectTracker   Free-rectangle bookkeeping for one sheet
                                 (split after every placement, prune
                                 rectangles contained in another).
  score_placement()            Pure scoring function for the selectable
                                 PackingHeuristic.
  MaxRectsPacker               Greedy packing engine: validate, expand by
                                 quantity, sort by area, place, roll over
                                 to a new page when the current one is full.
  parse_item() / PaperSize     Text parsing of "w,h[,qty]" and "A4"/"WxH".
  parse_items_csv()            Item list from a CSV file.
  to_layout_export()/to_json() JSON layout export (pydantic schema).
  SVGGenerator                 Render one packed page to SVG (svgwrite,
                                 label numbers as fontTools path outlines).

Usage
-----
    python labelnest.py -p A4 -i 100,50,3 -i 75,25,5
    python labelnest.py -p 200x300 --csv items.csv -o output/job
    python labelnest.py -p A5 -i 60,40,12 --no-rotation --heuristic baf
    python labelnest.py -p A4 -i 90,90,20 --json output/layout.json

Dependencies
------------
    svgwrite, fonttools, pydantic (>= 2)
"""

import argparse
import configparser
import csv
import os
import sys
import traceback
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import svgwrite
from fontTools.pens.svgPathPen import SVGPathPen
from fontTools.pens.transformPen import TransformPen
from fontTools.ttLib import TTFont, TTLibError
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

# ============================================================================
# CONFIGURATION
# ============================================================================

DEFAULT_CONFIG_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)),
                                   'labelnest.conf')

DEFAULT_CONFIG = {
    'paper': {
        'size': 'A4',
    },
    'packing': {
        'margin': '5.0',
        'gutter': '2.0',
        'allow_rotation': 'yes',
        'heuristic': 'best-short-side-fit',
    },
    'colors': {
        'outline': '#555555',
        'margin': '#cccccc',
        'text': '#000000',
        'marker': '#666666',
    },
    'font': {
        'path': '',
        'scale': '0.25',
    },
}


def load_config(path: Optional[str] = None) -> configparser.ConfigParser:
    """
    Build the tool configuration.

    Built-in defaults are loaded first; the INI file at *path* (default:
    ``labelnest.conf`` next to this module) overlays them.  A missing file
    is not an error, the defaults are used as-is.

    Parameters
    ----------
    path : Optional path to an INI file.

    Returns
    -------
    ConfigParser with the sections paper, packing, colors and font.
    """
    cfg = configparser.ConfigParser()
    cfg.read_dict(DEFAULT_CONFIG)

    path = path or DEFAULT_CONFIG_PATH
    if os.path.exists(path):
        cfg.read(path, encoding='utf-8')
        print(f"  → Loaded config: {path}")
    else:
        print(f"  ⚠️  Config file not found ({path}), using built-in defaults")
    return cfg


CFG = load_config()

# Pastel palette used to tell item types apart on rendered pages
PALETTE = (
    "#FFB3BA",  # light pink
    "#BAFFC9",  # light green
    "#BAE1FF",  # light blue
    "#FFFFBA",  # light yellow
    "#FFD9BA",  # light orange
    "#E0BBE4",  # light purple
    "#B5EAD7",  # mint
    "#FFDAC1",  # peach
    "#C7CEEA",  # periwinkle
    "#F0E6EF",  # lavender blush
    "#A8E6CF",  # light seafoam
    "#FDCFE8",  # pink lace
    "#FFF5BA",  # champagne
    "#B4F8C8",  # magic mint
    "#D4A5A5",  # dusty rose
    "#A0CED9",  # light cyan
    "#FFE5B4",  # papaya whip
    "#C1E1C1",  # tea green
    "#F9D5E5",  # fairy tale
    "#B8B8D1",  # languid lavender
)

SCORE_EPSILON = 0.001

# ============================================================================
# ERRORS
# ============================================================================


class PackingValidationError(ValueError):
    """
    The input cannot be packed: an item is malformed or too large for the
    usable area, or the configuration leaves no usable area at all.

    Raised before any placement work is done.
    """

    def __init__(self, errors: Sequence[str], item_indices: Sequence[int] = (),
                 usable_width: float = 0.0, usable_height: float = 0.0) -> None:
        super().__init__("; ".join(errors))
        self.errors = list(errors)
        self.item_indices = list(item_indices)
        self.usable_width = usable_width
        self.usable_height = usable_height


class PackingInvariantError(RuntimeError):
    """A validated item could not be placed even on a fresh page."""

    def __init__(self, item_index: int, instance_index: int, page_index: int) -> None:
        super().__init__(
            f"Failed to place item {item_index + 1}.{instance_index + 1} "
            f"on fresh page {page_index + 1}; validation should have rejected it")
        self.item_index = item_index
        self.instance_index = instance_index
        self.page_index = page_index


# ============================================================================
# DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True)
class Item:
    """
    One label type to be packed.

    Attributes
    ----------
    width    : Label width in millimetres.
    height   : Label height in millimetres.
    quantity : Number of identical copies required.
    """

    width: float      # mm
    height: float     # mm
    quantity: int = 1

    @property
    def area(self) -> float:
        """Area of a single copy in mm²."""
        return self.width * self.height


@dataclass(frozen=True)
class PaperSize:
    """A sheet size in millimetres; *name* is ``"Custom"`` for ad hoc sizes."""

    name: str
    width: float
    height: float

    @property
    def area(self) -> float:
        return self.width * self.height

    @classmethod
    def custom(cls, width: float, height: float) -> "PaperSize":
        return cls("Custom", width, height)

    @classmethod
    def standard_sizes(cls) -> List["PaperSize"]:
        return [cls.A2, cls.A3, cls.A4, cls.A5, cls.A6]

    @classmethod
    def parse(cls, text: str) -> "PaperSize":
        """
        Parse a paper size from a standard name (A2-A6, any case) or a
        custom ``WxH`` string such as ``"200x300"``.

        Raises
        ------
        ValueError if *text* is blank or not a recognised size.
        """
        if text is None or not text.strip():
            raise ValueError("Paper size must not be empty")

        normalized = text.strip().upper()
        for size in cls.standard_sizes():
            if size.name == normalized:
                return size

        for sep in ('x', 'X', '×'):
            idx = text.find(sep)
            if idx > 0:
                try:
                    width = float(text[:idx].strip())
                    height = float(text[idx + 1:].strip())
                except ValueError:
                    continue
                if width > 0 and height > 0:
                    return cls.custom(width, height)

        raise ValueError(f"Invalid paper size: '{text}'. "
                         f"Use A2-A6 or custom format like '200x300'.")

    def __str__(self) -> str:
        if self.name == "Custom":
            return f"{self.width:g}x{self.height:g}mm"
        return self.name


PaperSize.A2 = PaperSize("A2", 420, 594)
PaperSize.A3 = PaperSize("A3", 297, 420)
PaperSize.A4 = PaperSize("A4", 210, 297)
PaperSize.A5 = PaperSize("A5", 148, 210)
PaperSize.A6 = PaperSize("A6", 105, 148)


@dataclass(frozen=True)
class PackingConfiguration:
    """
    Packing options.

    Attributes
    ----------
    margin         : Uniform non-printable border on all four sides (mm).
    gutter         : Spacing reserved to the right of and below every
                     placed label (mm).
    allow_rotation : Whether labels may be turned by 90°.
    """

    margin: float = 5.0
    gutter: float = 2.0
    allow_rotation: bool = True

    def usable_width(self, paper: PaperSize) -> float:
        return paper.width - 2 * self.margin

    def usable_height(self, paper: PaperSize) -> float:
        return paper.height - 2 * self.margin

    def can_fit(self, item: Item, paper: PaperSize) -> bool:
        """True if *item* fits the usable area in some allowed orientation."""
        usable_w = self.usable_width(paper)
        usable_h = self.usable_height(paper)
        if item.width <= usable_w and item.height <= usable_h:
            return True
        return (self.allow_rotation
                and item.height <= usable_w and item.width <= usable_h)


@dataclass(frozen=True)
class FreeRect:
    """Unoccupied axis-aligned region in usable-area coordinates."""

    x: float
    y: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def area(self) -> float:
        return self.width * self.height

    def intersects(self, x: float, y: float, width: float, height: float) -> bool:
        """Strict overlap test; touching edges do not intersect."""
        return (x < self.right and x + width > self.x and
                y < self.bottom and y + height > self.y)

    def contains(self, other: "FreeRect") -> bool:
        """True if *other* lies within this rectangle on all four edges."""
        return (other.x >= self.x and other.y >= self.y and
                other.right <= self.right and other.bottom <= self.bottom)


@dataclass(frozen=True)
class PlacementRequest:
    """One concrete copy of an item, in its unrotated size."""

    item_index: int
    instance_index: int
    width: float
    height: float

    @property
    def area(self) -> float:
        return self.width * self.height


@dataclass(frozen=True)
class PlacementCandidate:
    """
    A feasible (free rectangle, orientation) pair found during search.

    *width*/*height* are the placed dimensions, already swapped when
    *rotated* is set.  *score* is the heuristic tuple (lower is better).
    """

    rect: FreeRect
    x: float
    y: float
    width: float
    height: float
    rotated: bool
    score: Tuple[float, float]


@dataclass(frozen=True)
class ItemPlacement:
    """
    A committed label position on a page.

    Attributes
    ----------
    x, y           : Top-left corner in sheet coordinates (mm), margin
                     included.
    width, height  : Placed size (mm), swapped when *rotated*.
    page_index     : Zero-based page.
    item_index     : Index of the originating Item.
    instance_index : Zero-based copy number within that Item.
    rotated        : Whether the label was turned by 90°.
    color          : Display tag from the colour provider (opaque).
    """

    x: float
    y: float
    width: float
    height: float
    page_index: int
    item_index: int
    instance_index: int
    rotated: bool
    color: str

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def area(self) -> float:
        return self.width * self.height

    @property
    def label(self) -> str:
        """Display label such as ``"2.3"`` (1-based item and copy)."""
        return f"{self.item_index + 1}.{self.instance_index + 1}"


@dataclass(frozen=True)
class PackingResult:
    """
    Output of a packing run.

    Page count, totals and efficiencies are derived from *placements*.
    Efficiency is used area divided by usable (post-margin) area.
    """

    placements: Tuple[ItemPlacement, ...]
    paper_size: PaperSize
    configuration: PackingConfiguration

    @property
    def page_count(self) -> int:
        if not self.placements:
            return 0
        return max(p.page_index for p in self.placements) + 1

    @property
    def total_items_placed(self) -> int:
        return len(self.placements)

    @property
    def usable_area(self) -> float:
        return (self.configuration.usable_width(self.paper_size) *
                self.configuration.usable_height(self.paper_size))

    def page_placements(self, page_index: int) -> List[ItemPlacement]:
        return [p for p in self.placements if p.page_index == page_index]

    def page_efficiency(self, page_index: int) -> float:
        placements = self.page_placements(page_index)
        if not placements or self.usable_area <= 0:
            return 0.0
        return sum(p.area for p in placements) / self.usable_area

    @property
    def overall_efficiency(self) -> float:
        total_area = self.usable_area * self.page_count
        if self.page_count == 0 or total_area <= 0:
            return 0.0
        return sum(p.area for p in self.placements) / total_area


# ============================================================================
# DISPLAY TAGS
# ============================================================================

class PaletteColorProvider:
    """
    Round-robin colour source over PALETTE.

    Any object exposing ``next_tag()`` and ``reset()`` can be handed to
    MaxRectsPacker instead; the packer resets it at the start of every run.
    """

    def __init__(self, palette: Sequence[str] = PALETTE) -> None:
        self.palette = tuple(palette)
        self._index = 0

    def next_tag(self) -> str:
        color = self.palette[self._index]
        self._index = (self._index + 1) % len(self.palette)
        return color

    def reset(self) -> None:
        self._index = 0


# ============================================================================
# PLACEMENT SCORING
# ============================================================================

class PackingHeuristic(Enum):
    """Rule used to choose between feasible (rectangle, orientation) pairs."""

    BEST_SHORT_SIDE_FIT = "best-short-side-fit"
    BEST_LONG_SIDE_FIT = "best-long-side-fit"
    BEST_AREA_FIT = "best-area-fit"
    BOTTOM_LEFT = "bottom-left"

    @classmethod
    def parse(cls, text: str) -> "PackingHeuristic":
        """Resolve a heuristic from its value, enum name or short alias."""
        key = text.strip().lower().replace('_', '-')
        key = _HEURISTIC_ALIASES.get(key, key)
        for heuristic in cls:
            if heuristic.value == key:
                return heuristic
        names = ", ".join(h.value for h in cls)
        raise ValueError(f"Unknown heuristic: '{text}'. Choose one of: {names}")


_HEURISTIC_ALIASES = {
    'bssf': 'best-short-side-fit',
    'blsf': 'best-long-side-fit',
    'baf': 'best-area-fit',
    'bl': 'bottom-left',
}

DEFAULT_HEURISTIC = PackingHeuristic.BEST_SHORT_SIDE_FIT


def score_placement(rect: FreeRect, item_width: float, item_height: float,
                    heuristic: PackingHeuristic = DEFAULT_HEURISTIC) -> Tuple[float, float]:
    """
    Score an item of the given (already oriented) size in *rect*.

    Returns a (primary, secondary) tuple compared lexicographically, lower
    is better.  The leftovers are the unused strips of *rect* to the right
    of and below the item.
    """
    leftover_w = rect.width - item_width
    leftover_h = rect.height - item_height

    if heuristic is PackingHeuristic.BEST_LONG_SIDE_FIT:
        return max(leftover_w, leftover_h), min(leftover_w, leftover_h)
    if heuristic is PackingHeuristic.BEST_AREA_FIT:
        return rect.area, min(leftover_w, leftover_h)
    if heuristic is PackingHeuristic.BOTTOM_LEFT:
        return rect.y, rect.x
    return min(leftover_w, leftover_h), max(leftover_w, leftover_h)


def is_better_score(score: Tuple[float, float], best: Tuple[float, float]) -> bool:
    """
    Lexicographic comparison, lower is better.  Primary values within
    SCORE_EPSILON of each other count as tied for the secondary comparison.
    """
    if score[0] < best[0]:
        return True
    return abs(score[0] - best[0]) < SCORE_EPSILON and score[1] < best[1]


# ============================================================================
# FREE-SPACE TRACKER
# ============================================================================

class FreeRectTracker:
    """
    Maximal free rectangles of a single sheet.

    Starts with one rectangle covering the whole usable area.  Every commit
    removes the rectangles touched by the occupied footprint (label plus
    gutter), replaces each with up to four residual strips, and prunes any
    rectangle contained in another.  Rectangles may overlap one another;
    each is individually free.
    """

    def __init__(self, width: float, height: float, gutter: float = 0.0) -> None:
        self.width = width
        self.height = height
        self.gutter = gutter
        self._free_rects: List[FreeRect] = [FreeRect(0.0, 0.0, width, height)]

    @property
    def free_rects(self) -> List[FreeRect]:
        return list(self._free_rects)

    def best_candidate(self, request: PlacementRequest, allow_rotation: bool,
                       heuristic: PackingHeuristic = DEFAULT_HEURISTIC
                       ) -> Optional[PlacementCandidate]:
        """
        Find the best-scoring position for *request*, or None.

        Every free rectangle is tried in the natural orientation and, when
        *allow_rotation* is set, turned by 90°.  A later candidate only
        replaces the current best if it scores strictly better, so ties go
        to the first rectangle in list order and to the unrotated
        orientation.
        """
        orientations = [(request.width, request.height, False)]
        if allow_rotation:
            orientations.append((request.height, request.width, True))

        best: Optional[PlacementCandidate] = None
        for rect in self._free_rects:
            for width, height, rotated in orientations:
                if width > rect.width or height > rect.height:
                    continue
                score = score_placement(rect, width, height, heuristic)
                if best is None or is_better_score(score, best.score):
                    best = PlacementCandidate(rect, rect.x, rect.y,
                                              width, height, rotated, score)
        return best

    def commit(self, x: float, y: float, width: float, height: float) -> None:
        """
        Mark the label at (*x*, *y*) of size *width* × *height* as occupied.

        The gutter is added to the right and bottom of the footprint before
        splitting.
        """
        width += self.gutter
        height += self.gutter

        survivors: List[FreeRect] = []
        residuals: List[FreeRect] = []
        for rect in self._free_rects:
            if rect.intersects(x, y, width, height):
                residuals.extend(self._split(rect, x, y, width, height))
            else:
                survivors.append(rect)

        self._free_rects = self._prune(survivors + residuals)

    @staticmethod
    def _split(rect: FreeRect, x: float, y: float,
               width: float, height: float) -> List[FreeRect]:
        """Parts of *rect* left of, right of, above and below the footprint."""
        parts = []
        if x > rect.x:
            parts.append(FreeRect(rect.x, rect.y, x - rect.x, rect.height))
        if x + width < rect.right:
            parts.append(FreeRect(x + width, rect.y,
                                  rect.right - (x + width), rect.height))
        if y > rect.y:
            parts.append(FreeRect(rect.x, rect.y, rect.width, y - rect.y))
        if y + height < rect.bottom:
            parts.append(FreeRect(rect.x, y + height,
                                  rect.width, rect.bottom - (y + height)))
        return parts

    @staticmethod
    def _prune(rects: List[FreeRect]) -> List[FreeRect]:
        """
        Drop every rectangle contained in another.

        Of two equal rectangles the earlier one is kept.  One pairwise sweep
        is enough: a rectangle only stops scanning once it is itself
        dropped.
        """
        removed = set()
        for i in range(len(rects)):
            if i in removed:
                continue
            for j in range(i + 1, len(rects)):
                if j in removed:
                    continue
                if rects[i].contains(rects[j]):
                    removed.add(j)
                elif rects[j].contains(rects[i]):
                    removed.add(i)
                    break
        return [rect for k, rect in enumerate(rects) if k not in removed]


# ============================================================================
# VALIDATION
# ============================================================================

def validate_configuration(configuration: PackingConfiguration,
                           paper_size: PaperSize) -> List[str]:
    """Messages for a paper/configuration pair that leaves nothing usable."""
    errors = []
    if paper_size.width <= 0 or paper_size.height <= 0:
        errors.append(f"Paper size {paper_size} must have positive dimensions.")
    if configuration.margin < 0:
        errors.append(f"Margin must not be negative (got {configuration.margin}).")
    if configuration.gutter < 0:
        errors.append(f"Gutter must not be negative (got {configuration.gutter}).")

    usable_w = configuration.usable_width(paper_size)
    usable_h = configuration.usable_height(paper_size)
    if usable_w <= 0 or usable_h <= 0:
        errors.append(f"Margin {configuration.margin}mm leaves no usable area on "
                      f"{paper_size} (usable area: {usable_w:g}x{usable_h:g}mm).")
    return errors


def _item_errors(index: int, item: Item, paper_size: PaperSize,
                 configuration: PackingConfiguration) -> List[str]:
    number = index + 1
    errors = []
    if item.width <= 0:
        errors.append(f"Item {number}: Width must be positive (got {item.width}).")
    if item.height <= 0:
        errors.append(f"Item {number}: Height must be positive (got {item.height}).")
    if item.quantity <= 0:
        errors.append(f"Item {number}: Quantity must be positive (got {item.quantity}).")

    if item.width > 0 and item.height > 0 and not configuration.can_fit(item, paper_size):
        rotation_note = (" (even when rotated)" if configuration.allow_rotation
                         else " (rotation is disabled)")
        errors.append(
            f"Item {number}: Size {item.width:g}x{item.height:g}mm is too large "
            f"to fit on {paper_size}{rotation_note}. Usable area: "
            f"{configuration.usable_width(paper_size):g}x"
            f"{configuration.usable_height(paper_size):g}mm.")
    return errors


def validate_items(items: Iterable[Item], paper_size: PaperSize,
                   configuration: PackingConfiguration) -> List[str]:
    """
    Check every item against the paper and configuration.

    Returns
    -------
    One message per problem, numbered by 1-based item position; empty if
    every item can be packed.
    """
    errors: List[str] = []
    for index, item in enumerate(items):
        errors.extend(_item_errors(index, item, paper_size, configuration))
    return errors


# ============================================================================
# MAXRECTS PACKER
# ============================================================================

class MaxRectsPacker:
    """
    Greedy MaxRects packer for fixed-size sheets.

    Algorithm overview
    ------------------
    1. Validate every item; abort before placing anything on failure.
    2. Expand each item into one request per copy.
    3. Sort requests by area, largest first (stable).
    4. Place each request at the best-scoring free rectangle of the current
       page (FreeRectTracker + score_placement).
    5. When nothing fits, open a new page and retry that request once.

    No backtracking: a page is never revisited once a later one is opened.
    A packer holds no per-run state, so one instance can serve several
    runs as long as they do not share the colour provider concurrently.
    """

    def __init__(self, color_provider=None,
                 heuristic: PackingHeuristic = DEFAULT_HEURISTIC) -> None:
        """
        Parameters
        ----------
        color_provider : Object with ``next_tag()``/``reset()``; defaults
                         to a fresh PaletteColorProvider.
        heuristic      : Placement scoring rule.
        """
        self.color_provider = color_provider or PaletteColorProvider()
        self.heuristic = heuristic

    def pack(self, items: Iterable[Item], paper_size: PaperSize,
             configuration: Optional[PackingConfiguration] = None) -> PackingResult:
        """
        Pack all copies of *items* onto as few *paper_size* sheets as the
        heuristic manages.

        Raises
        ------
        PackingValidationError : An item or the configuration is invalid.
        PackingInvariantError  : A validated request failed on a fresh page.
        """
        configuration = configuration or PackingConfiguration()
        item_list = list(items)

        self._validate(item_list, paper_size, configuration)
        requests = self._expand_and_sort(item_list)

        self.color_provider.reset()
        colors = [self.color_provider.next_tag() for _ in item_list]

        usable_w = configuration.usable_width(paper_size)
        usable_h = configuration.usable_height(paper_size)

        placements: List[ItemPlacement] = []
        page_index = 0
        tracker = FreeRectTracker(usable_w, usable_h, configuration.gutter)

        for request in requests:
            color = colors[request.item_index]
            placement = self._place(request, tracker, configuration, page_index, color)

            if placement is None:
                # Roll over: a fresh page with one full-area rectangle
                page_index += 1
                tracker = FreeRectTracker(usable_w, usable_h, configuration.gutter)
                placement = self._place(request, tracker, configuration,
                                        page_index, color)
                if placement is None:
                    raise PackingInvariantError(request.item_index,
                                                request.instance_index, page_index)

            placements.append(placement)

        return PackingResult(tuple(placements), paper_size, configuration)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _validate(items: List[Item], paper_size: PaperSize,
                  configuration: PackingConfiguration) -> None:
        errors = validate_configuration(configuration, paper_size)
        offending = []
        for index, item in enumerate(items):
            item_errors = _item_errors(index, item, paper_size, configuration)
            if item_errors:
                offending.append(index)
                errors.extend(item_errors)

        if errors:
            raise PackingValidationError(
                errors, offending,
                configuration.usable_width(paper_size),
                configuration.usable_height(paper_size))

    @staticmethod
    def _expand_and_sort(items: List[Item]) -> List[PlacementRequest]:
        requests = [
            PlacementRequest(item_index, instance, item.width, item.height)
            for item_index, item in enumerate(items)
            for instance in range(item.quantity)
        ]
        # sorted() is stable with reverse=True, equal areas keep input order
        return sorted(requests, key=lambda r: r.area, reverse=True)

    def _place(self, request: PlacementRequest, tracker: FreeRectTracker,
               configuration: PackingConfiguration, page_index: int,
               color: str) -> Optional[ItemPlacement]:
        candidate = tracker.best_candidate(request, configuration.allow_rotation,
                                           self.heuristic)
        if candidate is None:
            return None

        tracker.commit(candidate.x, candidate.y, candidate.width, candidate.height)
        return ItemPlacement(
            x=candidate.x + configuration.margin,
            y=candidate.y + configuration.margin,
            width=candidate.width,
            height=candidate.height,
            page_index=page_index,
            item_index=request.item_index,
            instance_index=request.instance_index,
            rotated=candidate.rotated,
            color=color,
        )


# ============================================================================
# PARSERS
# ============================================================================

def parse_item(text: str) -> Item:
    """
    Parse ``"width,height"`` or ``"width,height,quantity"``.

    Raises
    ------
    ValueError with a message naming the offending field.
    """
    if text is None or not text.strip():
        raise ValueError("Item specification cannot be empty.")

    parts = [part.strip() for part in text.split(',')]
    if len(parts) not in (2, 3):
        raise ValueError(f"Invalid item format: '{text}'. "
                         f"Expected 'width,height' or 'width,height,quantity'.")

    try:
        width = float(parts[0])
    except ValueError:
        width = 0.0
    if width <= 0:
        raise ValueError(f"Invalid width: '{parts[0]}'. Must be a positive number.")

    try:
        height = float(parts[1])
    except ValueError:
        height = 0.0
    if height <= 0:
        raise ValueError(f"Invalid height: '{parts[1]}'. Must be a positive number.")

    quantity = 1
    if len(parts) == 3:
        try:
            quantity = int(parts[2])
        except ValueError:
            quantity = 0
        if quantity <= 0:
            raise ValueError(f"Invalid quantity: '{parts[2]}'. "
                             f"Must be a positive integer.")

    return Item(width, height, quantity)


CSV_COLUMNS = {
    'WIDTH': ['WIDTH(MM)', 'WIDTH', 'LABEL WIDTH(MM)', 'LABEL WIDTH', 'W'],
    'HEIGHT': ['HEIGHT(MM)', 'HEIGHT', 'LABEL HEIGHT(MM)', 'LABEL HEIGHT', 'H'],
    'QUANTITY': ['QUANTITY', 'QTY', 'COUNT'],
}


def parse_items_csv(filename: str) -> List[Item]:
    """
    Read an item list from a CSV file.

    The delimiter is sniffed (``, ; \\t |``) with a semicolon fallback.  A
    header row is required; column names are matched case-insensitively
    against CSV_COLUMNS.  WIDTH and HEIGHT are required, QUANTITY is
    optional and defaults to 1.  Rows that do not parse or hold
    non-positive values are skipped with a warning.

    Parameters
    ----------
    filename : Path to a UTF-8 CSV file.

    Returns
    -------
    List of Item objects; empty if a required column is missing.
    """
    items = []

    with open(filename, 'r', encoding='utf-8', newline='') as f:
        sample = f.read(4096)
        f.seek(0)
        delimiter = ';'
        try:
            delimiter = csv.Sniffer().sniff(sample, delimiters=',;\t|').delimiter
            print(f"  → Detected CSV delimiter: {delimiter!r}")
        except csv.Error:
            print(f"  ⚠️  CSV dialect detection failed, assuming delimiter={delimiter!r}")

        reader = csv.reader(f, delimiter=delimiter, skipinitialspace=True)

        header = next(reader, None)
        if not header:
            print("  ❌ Empty CSV file")
            return []

        header = [h.strip().strip('"').upper() for h in header]
        indices = {}
        for key, names in CSV_COLUMNS.items():
            for name in names:
                if name in header:
                    indices[key] = header.index(name)
                    break
            if key not in indices and key != 'QUANTITY':
                print(f"  ❌ Required column not found, looking for one of: {names}")
                print(f"     Available columns: {header}")
                return []

        row_num = 1
        for row in reader:
            row_num += 1
            if not row or all(not cell.strip() for cell in row):
                continue

            try:
                width = float(row[indices['WIDTH']].strip())
                height = float(row[indices['HEIGHT']].strip())
                quantity = 1
                if 'QUANTITY' in indices:
                    quantity = int(row[indices['QUANTITY']].strip())
            except (ValueError, IndexError) as e:
                print(f"  ⚠️  Skipping invalid row {row_num}: {e}")
                continue

            if width <= 0 or height <= 0 or quantity <= 0:
                print(f"  ⚠️  Skipping row {row_num}: sizes and quantity must be positive")
                continue

            items.append(Item(width, height, quantity))
            print(f"  Row {row_num}: {quantity}x ({width:g}x{height:g}mm)")

    return items


# ============================================================================
# JSON LAYOUT EXPORT
# ============================================================================

EXPORT_FORMAT_VERSION = "1.0"


class _ExportModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LayoutExportHeader(_ExportModel):
    version: str
    generated_at: datetime
    generator: str


class LayoutExportPaperSize(_ExportModel):
    name: str
    width_mm: float
    height_mm: float


class LayoutExportConfiguration(_ExportModel):
    margin_mm: float
    gutter_mm: float
    allow_rotation: bool


class LayoutExportItem(_ExportModel):
    item_number: int
    width_mm: float
    height_mm: float
    quantity: int


class LayoutExportInput(_ExportModel):
    paper_size: LayoutExportPaperSize
    configuration: LayoutExportConfiguration
    items: List[LayoutExportItem]


class LayoutExportPlacement(_ExportModel):
    """Page, item and instance numbers are 1-based."""

    page_number: int
    item_number: int
    instance_number: int
    x_mm: float
    y_mm: float
    width_mm: float
    height_mm: float
    is_rotated: bool


class LayoutExportPageDetail(_ExportModel):
    page_number: int
    items_on_page: int
    efficiency: float


class LayoutExportSummary(_ExportModel):
    total_pages: int
    total_items_placed: int
    overall_efficiency: float
    page_details: List[LayoutExportPageDetail]


class LayoutExport(_ExportModel):
    """Complete, self-describing layout that another tool can rebuild."""

    header: LayoutExportHeader
    input: LayoutExportInput
    placements: List[LayoutExportPlacement]
    summary: LayoutExportSummary


def to_layout_export(result: PackingResult, items: Sequence[Item],
                     generator: str = "Label Nesting") -> LayoutExport:
    """
    Build the export model for *result*.

    *items* are the original inputs, included so the export records what
    was asked for as well as where it went.
    """
    config = result.configuration
    return LayoutExport(
        header=LayoutExportHeader(
            version=EXPORT_FORMAT_VERSION,
            generated_at=datetime.now(timezone.utc),
            generator=generator,
        ),
        input=LayoutExportInput(
            paper_size=LayoutExportPaperSize(
                name=result.paper_size.name,
                width_mm=result.paper_size.width,
                height_mm=result.paper_size.height,
            ),
            configuration=LayoutExportConfiguration(
                margin_mm=config.margin,
                gutter_mm=config.gutter,
                allow_rotation=config.allow_rotation,
            ),
            items=[
                LayoutExportItem(item_number=i + 1, width_mm=item.width,
                                 height_mm=item.height, quantity=item.quantity)
                for i, item in enumerate(items)
            ],
        ),
        placements=[
            LayoutExportPlacement(
                page_number=p.page_index + 1,
                item_number=p.item_index + 1,
                instance_number=p.instance_index + 1,
                x_mm=p.x,
                y_mm=p.y,
                width_mm=p.width,
                height_mm=p.height,
                is_rotated=p.rotated,
            )
            for p in result.placements
        ],
        summary=LayoutExportSummary(
            total_pages=result.page_count,
            total_items_placed=result.total_items_placed,
            overall_efficiency=result.overall_efficiency,
            page_details=[
                LayoutExportPageDetail(
                    page_number=page + 1,
                    items_on_page=len(result.page_placements(page)),
                    efficiency=result.page_efficiency(page),
                )
                for page in range(result.page_count)
            ],
        ),
    )


def to_json(result: PackingResult, items: Sequence[Item], indented: bool = True,
            generator: str = "Label Nesting") -> str:
    """Serialise *result* as the camelCase JSON layout export."""
    export = to_layout_export(result, items, generator)
    return export.model_dump_json(by_alias=True, indent=2 if indented else None)


# ============================================================================
# SVG GENERATOR
# ============================================================================

FONT_SEARCH_PATHS = [
    'arial.ttf',
    '/usr/share/fonts/truetype/liberation/LiberationSans-Regular.ttf',
    '/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf',
    '/Library/Fonts/Arial.ttf',
    'C:\\Windows\\Fonts\\arial.ttf',
]


class SVGGenerator:
    """
    Render one page of a PackingResult as an SVG document.

    Groups in draw order (back to front):

    =======  ================================================
    Group    Content
    =======  ================================================
    margin   thin outline of the usable (post-margin) area
    items    one rectangle per placement, filled with its colour
    labels   placement labels ("1.1") as filled path outlines
    page     "R" marker on rotated items and the page footer
    =======  ================================================

    Label text goes through fontTools when a TrueType font can be found,
    otherwise a block placeholder path is drawn in its place.
    """

    def __init__(self, result: PackingResult, page_index: int = 0,
                 cfg: Optional[configparser.ConfigParser] = None) -> None:
        self.result = result
        self.page_index = page_index
        self.cfg = cfg or CFG
        self.color_outline = self.cfg.get('colors', 'outline')
        self.color_margin = self.cfg.get('colors', 'margin')
        self.color_text = self.cfg.get('colors', 'text')
        self.color_marker = self.cfg.get('colors', 'marker')
        self.text_scale = self.cfg.getfloat('font', 'scale')
        self.font = self._load_font()

    def _load_font(self) -> Optional[TTFont]:
        """First loadable TrueType font: [font] path, then FONT_SEARCH_PATHS."""
        candidates = list(FONT_SEARCH_PATHS)
        configured = self.cfg.get('font', 'path')
        if configured:
            candidates.insert(0, configured)

        for font_path in candidates:
            if not os.path.exists(font_path):
                continue
            try:
                font = TTFont(font_path)
            except (OSError, TTLibError) as e:
                print(f"  ⚠️  Could not load font {font_path}: {e}")
                continue
            print(f"  → Loaded font: {font_path}")
            return font

        print("  ⚠️  No TrueType font found, labels use placeholder blocks")
        return None

    def generate(self) -> str:
        """
        Render the page to an SVG string.

        Returns
        -------
        Complete SVG document, XML declaration and metadata comment first.
        """
        paper = self.result.paper_size
        config = self.result.configuration
        placements = self.result.page_placements(self.page_index)

        dwg = svgwrite.Drawing(size=(f"{paper.width}mm", f"{paper.height}mm"),
                               viewBox=f"0 0 {paper.width} {paper.height}")

        margin_group = dwg.g(id='margin')
        margin_group.add(dwg.rect(
            insert=(config.margin, config.margin),
            size=(config.usable_width(paper), config.usable_height(paper)),
            fill='none', stroke=self.color_margin, stroke_width=0.2))
        dwg.add(margin_group)

        items_group = dwg.g(id='items')
        for p in placements:
            items_group.add(dwg.rect(
                insert=(p.x, p.y), size=(p.width, p.height),
                fill=p.color, stroke=self.color_outline, stroke_width=0.2))
        dwg.add(items_group)

        labels_group = dwg.g(id='labels')
        for p in placements:
            d = self._label_path(p)
            if d:
                labels_group.add(dwg.path(d=d, fill=self.color_text))
        dwg.add(labels_group)

        page_group = dwg.g(id='page')
        for p in placements:
            if p.rotated:
                page_group.add(dwg.text('R', insert=(p.x + 1, p.y + 4),
                                        font_size=3, fill=self.color_marker))
        page_group.add(dwg.text(
            f"Page {self.page_index + 1} of {self.result.page_count}",
            insert=(config.margin, paper.height - config.margin / 2),
            font_size=3, fill=self.color_marker))
        dwg.add(page_group)

        svg_string = dwg.tostring()

        metadata_comment = f"""
<!-- Label Nesting -->
<!-- Paper: {paper} -->
<!-- Page: {self.page_index + 1} of {self.result.page_count} -->
<!-- Pieces: {len(placements)} -->
<!-- Efficiency: {self.result.page_efficiency(self.page_index) * 100:.1f}% -->
"""
        if svg_string.startswith('<?xml'):
            xml_decl_end = svg_string.find('?>') + 2
            return svg_string[:xml_decl_end] + metadata_comment + svg_string[xml_decl_end:]
        return '<?xml version="1.0" encoding="utf-8" ?>' + metadata_comment + svg_string

    def _label_path(self, p: ItemPlacement) -> str:
        """
        Path data for the label of *p*, centred in its rectangle.

        The text height is ``[font] scale`` times the shorter side; the
        baseline sits so the cap height is roughly centred.
        """
        size = min(p.width, p.height) * self.text_scale
        cx = p.x + p.width / 2
        baseline = p.y + p.height / 2 + size * 0.35
        if self.font is None:
            return self._placeholder_path(p.label, cx, baseline, size)
        return self._text_path(p.label, cx, baseline, size)

    def _text_path(self, text: str, x: float, y: float, size: float) -> str:
        """
        Render *text* as one merged SVG path via fontTools.

        Each glyph is drawn through a TransformPen with the matrix
        ``(scale, 0, 0, -scale, pen_x, y)``; the negative y-scale flips the
        font's y-up outlines into SVG's y-down space.  *x* is the
        horizontal centre, *y* the baseline.
        """
        units_per_em = self.font['head'].unitsPerEm
        scale = size / units_per_em
        cmap = self.font.getBestCmap()
        if not cmap:
            return self._placeholder_path(text, x, y, size)
        glyph_set = self.font.getGlyphSet()

        glyphs = []
        total_width = 0.0
        for char in text:
            glyph_name = cmap.get(ord(char))
            if glyph_name and glyph_name in glyph_set:
                glyph = glyph_set[glyph_name]
                advance = glyph.width * scale
            else:
                glyph = None
                advance = size * 0.5
            glyphs.append((glyph, advance))
            total_width += advance

        pen = SVGPathPen(glyph_set)
        pen_x = x - total_width / 2
        for glyph, advance in glyphs:
            if glyph is not None:
                glyph.draw(TransformPen(pen, (scale, 0, 0, -scale, pen_x, y)))
            pen_x += advance
        return pen.getCommands()

    @staticmethod
    def _placeholder_path(text: str, x: float, y: float, size: float) -> str:
        """One filled block per non-space character, monospaced and centred."""
        if not text:
            return ''
        char_width = size * 0.6
        spacing = size * 0.1
        total_width = len(text) * (char_width + spacing) - spacing
        start_x = x - total_width / 2
        top = y - size * 0.8

        blocks = []
        for i, char in enumerate(text):
            if char == ' ':
                continue
            left = start_x + i * (char_width + spacing)
            blocks.append(
                f"M {left:.3f},{top:.3f} "
                f"L {left + char_width:.3f},{top:.3f} "
                f"L {left + char_width:.3f},{top + size:.3f} "
                f"L {left:.3f},{top + size:.3f} Z")
        return ' '.join(blocks)


# ============================================================================
# PIPELINE
# ============================================================================

def generate_layout(items: Sequence[Item], paper_size: PaperSize,
                    configuration: PackingConfiguration,
                    output_prefix: str = "output/layout",
                    heuristic: PackingHeuristic = DEFAULT_HEURISTIC,
                    json_path: Optional[str] = None,
                    cfg: Optional[configparser.ConfigParser] = None) -> List[str]:
    """
    Full pipeline: pack → print summary → write one SVG per page
    (→ optional JSON export).

    Parameters
    ----------
    items         : Items to pack.
    paper_size    : Target sheet.
    configuration : Margin, gutter and rotation settings.
    output_prefix : Path prefix; pages are written to
                    ``{prefix}_page_{n}.svg`` (directories are created).
    heuristic     : Placement scoring rule.
    json_path     : Where to write the JSON layout export, if anywhere.
    cfg           : Rendering configuration (defaults to CFG).

    Returns
    -------
    Written file paths, SVG pages first then the JSON export.

    Raises
    ------
    PackingValidationError, PackingInvariantError from the packer.
    """
    print("=" * 70)
    print("LABEL NESTING")
    print("=" * 70)
    print(f"Paper: {paper_size} ({paper_size.width:g} x {paper_size.height:g} mm)")
    print(f"Margin: {configuration.margin:g} mm, gutter: {configuration.gutter:g} mm, "
          f"rotation: {'on' if configuration.allow_rotation else 'off'}")
    print(f"Heuristic: {heuristic.value}")

    total_pieces = sum(item.quantity for item in items)
    total_area = sum(item.area * item.quantity for item in items)
    print(f"\n✅ {len(items)} item type(s), {total_pieces} piece(s), "
          f"{total_area:.1f} mm² to place")

    packer = MaxRectsPacker(PaletteColorProvider(), heuristic)
    result = packer.pack(items, paper_size, configuration)

    print(f"✅ Packed onto {result.page_count} page(s), "
          f"efficiency {result.overall_efficiency * 100:.1f}%")

    print(f"\n{'─' * 70}")
    print("WRITING OUTPUT")
    print(f"{'─' * 70}")

    out_dir = os.path.dirname(output_prefix)
    if out_dir:
        os.makedirs(out_dir, exist_ok=True)

    output_files = []
    for page_index in range(result.page_count):
        filename = f"{output_prefix}_page_{page_index + 1}.svg"
        svg_content = SVGGenerator(result, page_index, cfg).generate()
        with open(filename, 'w', encoding='utf-8') as f:
            f.write(svg_content)
        output_files.append(filename)
        print(f"📄 {filename}: {len(result.page_placements(page_index))} piece(s), "
              f"{result.page_efficiency(page_index) * 100:.1f}%")

    if json_path:
        json_dir = os.path.dirname(json_path)
        if json_dir:
            os.makedirs(json_dir, exist_ok=True)
        with open(json_path, 'w', encoding='utf-8') as f:
            f.write(to_json(result, items))
        output_files.append(json_path)
        print(f"📄 {json_path}: layout export")

    print("\nSUMMARY BY ITEM:")
    pages_by_item: Dict[int, set] = defaultdict(set)
    for p in result.placements:
        pages_by_item[p.item_index].add(p.page_index + 1)
    for index, item in enumerate(items):
        pages = ", ".join(str(n) for n in sorted(pages_by_item[index]))
        print(f"  • Item {index + 1} ({item.width:g}x{item.height:g}mm) "
              f"x{item.quantity}: page(s) {pages}")
    print()

    return output_files


# ============================================================================
# CLI INTERFACE
# ============================================================================

def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="labelnest",
        description="Pack rectangular labels onto sheets of paper (MaxRects)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  labelnest -p A4 -i 100,50,3 -i 75,25,5
  labelnest -p 200x300 --csv items.csv -o output/job
  labelnest -p A5 -i 60,40,12 --no-rotation --heuristic baf
  labelnest -p A4 -i 90,90,20 --json output/layout.json

Heuristics:
  best-short-side-fit (bssf, default), best-long-side-fit (blsf),
  best-area-fit (baf), bottom-left (bl)
        """
    )
    parser.add_argument("-p", "--paper", default=None,
                        help="Paper size: A2-A6 or WxH in mm (default from config: A4)")
    parser.add_argument("-i", "--item", action="append", default=[],
                        metavar="W,H[,QTY]",
                        help="Item size in mm and quantity; repeatable")
    parser.add_argument("--csv", default=None, metavar="FILE",
                        help="CSV file with WIDTH, HEIGHT[, QUANTITY] columns")
    parser.add_argument("-m", "--margin", type=float, default=None, metavar="MM",
                        help="Page margin in mm (default from config: 5)")
    parser.add_argument("-g", "--gutter", type=float, default=None, metavar="MM",
                        help="Space between items in mm (default from config: 2)")
    parser.add_argument("--no-rotation", action="store_true",
                        help="Never rotate items")
    parser.add_argument("--heuristic", default=None,
                        help="Placement heuristic (default from config)")
    parser.add_argument("-o", "--output", default="output/layout",
                        help="Output path prefix for SVG pages "
                             "(default: output/layout)")
    parser.add_argument("--json", default=None, metavar="FILE",
                        help="Also write the JSON layout export to FILE")
    parser.add_argument("--config", default=None, metavar="FILE",
                        help="Configuration file (default: labelnest.conf)")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Command-line entry point; returns the process exit status."""
    args = build_arg_parser().parse_args(argv)
    cfg = load_config(args.config) if args.config else CFG

    try:
        paper = PaperSize.parse(args.paper or cfg.get('paper', 'size'))

        items = [parse_item(text) for text in args.item]
        if args.csv:
            items.extend(parse_items_csv(args.csv))
        if not items:
            print("❌ Error: No items specified. Use -i W,H[,QTY] or --csv FILE.")
            return 1

        configuration = PackingConfiguration(
            margin=args.margin if args.margin is not None
            else cfg.getfloat('packing', 'margin'),
            gutter=args.gutter if args.gutter is not None
            else cfg.getfloat('packing', 'gutter'),
            allow_rotation=(not args.no_rotation
                            and cfg.getboolean('packing', 'allow_rotation')),
        )
        heuristic = PackingHeuristic.parse(args.heuristic or cfg.get('packing', 'heuristic'))

        errors = (validate_configuration(configuration, paper) +
                  validate_items(items, paper, configuration))
        if errors:
            for error in errors:
                print(f"❌ {error}")
            return 1

        generate_layout(items, paper, configuration, args.output, heuristic,
                        json_path=args.json, cfg=cfg)
    except FileNotFoundError as e:
        print(f"\n❌ Error: File not found: {e.filename}")
        return 1
    except ValueError as e:
        print(f"\n❌ Error: {e}")
        return 1
    except PackingInvariantError as e:
        print(f"\n❌ Internal error: {e}")
        traceback.print_exc()
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
