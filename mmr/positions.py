"""
MMR position arithmetic.

Nodes of a Merkle Mountain Range are numbered densely in creation order
(post-order over each perfect subtree). For 7 leaves:

            6
          /   \\
         2     5      9
        / \\   / \\   / \\
       0   1 3   4 7   8  10

Leaves sit at 0, 1, 3, 4, 7, 8, 10; peaks are 6, 9, 10. Everything below is
pure integer arithmetic over those numbers; nothing is materialized.

Terminology
-----------
- position   : index of a node in creation order
- leaf index : ordinal among leaves only
- height     : 0 for leaves, child height + 1 for inner nodes
- peak       : root of a maximal perfect subtree; one per set bit of the
               leaf count, tallest (most significant bit) first
"""

from __future__ import annotations

from typing import List, NamedTuple


def _check(name: str, value: int) -> None:
    if value < 0:
        raise ValueError(f"{name} must be >= 0 (got {value})")


def _popcount(n: int) -> int:
    return bin(n).count("1")


def _trailing_zeros(n: int) -> int:
    return (n & -n).bit_length() - 1


def _all_ones(n: int) -> bool:
    return n != 0 and (n & (n + 1)) == 0


# ---------------------------------------------------------------------------
# Sizes & positions
# ---------------------------------------------------------------------------


def mmr_size_for(leaf_count: int) -> int:
    """Total node count of a range holding `leaf_count` leaves."""
    _check("leaf_count", leaf_count)
    return 2 * leaf_count - _popcount(leaf_count)


def leaf_index_to_mmr_size(leaf_index: int) -> int:
    """Node count right after leaf `leaf_index` has been appended."""
    _check("leaf_index", leaf_index)
    return mmr_size_for(leaf_index + 1)


def leaf_index_to_position(leaf_index: int) -> int:
    """Position of the `leaf_index`-th leaf."""
    _check("leaf_index", leaf_index)
    return leaf_index_to_mmr_size(leaf_index) - _trailing_zeros(leaf_index + 1) - 1


def position_to_height(position: int) -> int:
    """
    Height of the node at `position`.

    Works on ``position + 1``: while it is not all ones in binary, jump to
    the same node in the left sibling subtree by subtracting
    ``2^(bit_length-1) - 1``. An all-ones value of k bits is the root of a
    perfect tree of height k - 1.
    """
    _check("position", position)
    p = position + 1
    while not _all_ones(p):
        p -= (1 << (p.bit_length() - 1)) - 1
    return p.bit_length() - 1


def is_leaf(position: int) -> bool:
    return position_to_height(position) == 0


def parent_offset(height: int) -> int:
    """Distance from a left child of `height` to its parent."""
    _check("height", height)
    return 2 << height


def sibling_offset(height: int) -> int:
    """Distance from a left child of `height` to its right sibling."""
    _check("height", height)
    return (2 << height) - 1


# ---------------------------------------------------------------------------
# Peaks
# ---------------------------------------------------------------------------


class PeakSlot(NamedTuple):
    """One mountain of the range."""

    index: int        # 0 = leftmost (tallest) peak
    height: int
    position: int     # position of the peak node
    offset: int       # position of the mountain's first node
    first_leaf: int   # leaf index of the mountain's leftmost leaf

    @property
    def leaf_span(self) -> int:
        return 1 << self.height


def peak_slots(leaf_count: int) -> List[PeakSlot]:
    """Mountains of a range with `leaf_count` leaves, left to right."""
    _check("leaf_count", leaf_count)
    slots: List[PeakSlot] = []
    offset = 0
    first_leaf = 0
    for h in range(leaf_count.bit_length() - 1, -1, -1):
        if not (leaf_count >> h) & 1:
            continue
        size = (1 << (h + 1)) - 1
        slots.append(PeakSlot(len(slots), h, offset + size - 1, offset, first_leaf))
        offset += size
        first_leaf += 1 << h
    return slots


def peaks_for(leaf_count: int) -> List[int]:
    """Peak positions for `leaf_count` leaves, tallest first."""
    return [s.position for s in peak_slots(leaf_count)]


def peak_heights(leaf_count: int) -> List[int]:
    """Heights matching `peaks_for(leaf_count)`."""
    return [s.height for s in peak_slots(leaf_count)]


class LeafLocation(NamedTuple):
    peak_offset: int  # index into peaks_for(leaf_count)
    height: int       # height of that peak = proof path length
    local_index: int  # leaf index inside the mountain


def locate_leaf(leaf_index: int, leaf_count: int) -> LeafLocation:
    """
    Which mountain holds `leaf_index` in a range of `leaf_count` leaves.

    Raises ValueError when the leaf does not exist.
    """
    _check("leaf_index", leaf_index)
    if leaf_index >= leaf_count:
        raise ValueError(f"leaf_index {leaf_index} out of range for {leaf_count} leaves")
    for s in peak_slots(leaf_count):
        if leaf_index < s.first_leaf + s.leaf_span:
            return LeafLocation(s.index, s.height, leaf_index - s.first_leaf)
    raise AssertionError("unreachable: leaf not covered by any peak")


def expected_proof_length(leaf_index: int, leaf_count: int) -> int:
    """
    Item count of an inclusion proof: path siblings, one digest per peak to
    the left, and one bag when peaks exist to the right.
    """
    loc = locate_leaf(leaf_index, leaf_count)
    n_peaks = _popcount(leaf_count)
    has_right = loc.peak_offset < n_peaks - 1
    return loc.height + loc.peak_offset + (1 if has_right else 0)


__all__ = [
    "mmr_size_for",
    "leaf_index_to_mmr_size",
    "leaf_index_to_position",
    "position_to_height",
    "is_leaf",
    "parent_offset",
    "sibling_offset",
    "PeakSlot",
    "peak_slots",
    "peaks_for",
    "peak_heights",
    "LeafLocation",
    "locate_leaf",
    "expected_proof_length",
]
