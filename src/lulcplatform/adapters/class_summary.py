from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Sequence

from ..contracts.core import ClassLabel
from ..contracts.products import ClassSummary


@dataclass(frozen=True)
class ClassSummaryBuilder:
    """Builds a ClassSummary from a label histogram (class id -> pixel count).
    Ids outside `classes` and empty bins are dropped.
    """

    def from_histogram(self, hist: Mapping[int, int], classes: Sequence[ClassLabel]) -> ClassSummary:
        ids = {int(c.id) for c in classes}
        # pixel counts of known classes
        counts = {int(k): int(v) for k, v in sorted(hist.items()) if int(k) in ids and int(v) > 0}
        total = sum(counts.values())
        percents = {k: (v / float(total)) * 100.0 for k, v in counts.items()} if total else {}
        # palette covers every class, present or not
        palette = {int(c.id): (c.color.r, c.color.g, c.color.b) for c in classes}
        names = {int(c.id): c.name for c in classes}
        return ClassSummary(counts=counts, percents=percents, palette=palette, names=names)
