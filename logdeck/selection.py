"""Selection model: global store positions, a range anchor and list navigation.

Selections hold store positions; navigation works in filtered-view positions, i.e.
indexes into the current filtered index list.
"""

import bisect
import logging
from typing import Sequence

logger = logging.getLogger(__name__)


class SelectionModel:
    def __init__(self):
        self._selected: set[int] = set()
        self._order: list[int] = []     # selection order, last is most recent
        self.anchor: int | None = None

    @property
    def selected(self) -> set[int]:
        return set(self._selected)

    def __len__(self) -> int:
        return len(self._selected)

    def __contains__(self, position: int) -> bool:
        return position in self._selected

    def sorted_positions(self) -> list[int]:
        return sorted(self._selected)

    def current(self) -> int | None:
        """The single active position: the only one, else the anchor, else the latest."""
        if len(self._selected) == 1:
            return self._order[-1]
        if self._selected:
            if self.anchor is not None:
                return self.anchor
            return self._order[-1]
        return None

    def _set(self, positions):
        self._order = list(dict.fromkeys(positions))
        self._selected = set(self._order)

    def select(self, position: int):
        self._set([position])
        self.anchor = position

    def clear(self):
        self._set([])

    def reset(self):
        self.clear()
        self.anchor = None

    def toggle(self, position: int, visible: Sequence[int], extend: bool = False, additive: bool = False):
        """Click semantics: plain replaces, ``additive`` XORs, ``extend`` selects a range.

        The range runs over the filtered view between the anchor and ``position``.
        """
        if extend and self.anchor is not None:
            start = _index_of(visible, self.anchor)
            stop = _index_of(visible, position)
            if start >= 0 and stop >= 0:
                lo, hi = min(start, stop), max(start, stop)
                span = [p for p in visible[lo:hi + 1] if p != position]
                self._set(span + [position])
                return
            self._set([position])
        elif additive:
            if position in self._selected:
                self._set(p for p in self._order if p != position)
            else:
                self._set(self._order + [position])
        else:
            self._set([position])
        self.anchor = position

    def move_by(self, direction: int, visible: Sequence[int], extend: bool = False) -> int | None:
        """Move one row up or down the filtered view. Returns the new view position."""
        if not visible:
            return None
        cur = self._order[-1] if self._order else self.anchor
        cur_vi = _index_of(visible, cur) if cur is not None else -1
        if cur_vi < 0:
            target_vi = 0 if direction > 0 else len(visible) - 1
        else:
            target_vi = min(max(cur_vi + (1 if direction > 0 else -1), 0), len(visible) - 1)
        target = visible[target_vi]

        if not extend:
            self.select(target)
            return target_vi

        anchor = self.anchor if self.anchor is not None else (cur if cur is not None else target)
        anchor_vi = _index_of(visible, anchor)
        if anchor_vi >= 0:
            lo, hi = min(anchor_vi, target_vi), max(anchor_vi, target_vi)
            span = list(visible[lo:hi + 1])
            # keep the moving end last so the next move continues from it
            span.remove(target)
            self._set(span + [target])
            self.anchor = anchor
        else:
            self.select(target)
        return target_vi

    def goto_start(self, visible: Sequence[int]) -> int | None:
        if not visible:
            return None
        self.select(visible[0])
        return 0

    def goto_end(self, visible: Sequence[int]) -> int | None:
        if not visible:
            return None
        self.select(visible[-1])
        return len(visible) - 1

    def goto_candidate(self, direction: int, candidates: Sequence[int], visible: Sequence[int]) -> int | None:
        """Jump to the next/previous view position in ``candidates`` (ascending).

        Without a current selection, forward goes to the first candidate and backward
        to the last. At either end the boundary candidate is kept; no wrapping.
        """
        if not candidates or not visible:
            return None
        cur = self.current()
        cur_vi = _index_of(visible, cur) if cur is not None else -1

        if cur_vi < 0:
            target_vi = candidates[0] if direction > 0 else candidates[-1]
        elif direction > 0:
            i = bisect.bisect_right(candidates, cur_vi)
            target_vi = candidates[i] if i < len(candidates) else candidates[-1]
        else:
            i = bisect.bisect_left(candidates, cur_vi) - 1
            target_vi = candidates[i] if i >= 0 else candidates[0]

        if not 0 <= target_vi < len(visible):
            logger.warning("Navigation candidate %d outside view of %d rows", target_vi, len(visible))
            return None
        self.select(visible[target_vi])
        return target_vi

    def retarget(self, mapping: dict[int, int]):
        """Translate positions after a re-sort; positions missing from ``mapping`` drop out."""
        self._set(mapping[p] for p in self._order if p in mapping)
        self.anchor = mapping.get(self.anchor) if self.anchor is not None else None


def _index_of(seq: Sequence[int], value) -> int:
    """Position of ``value`` in the ascending ``seq``, or -1."""
    i = bisect.bisect_left(seq, value)
    if i < len(seq) and seq[i] == value:
        return i
    return -1
