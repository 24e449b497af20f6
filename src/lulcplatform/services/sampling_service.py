# src/lulcplatform/services/sampling_service.py
from __future__ import annotations

"""
Automatic labels from a reference land-cover raster.

  CLIP reference → HISTOGRAM (coverage + unmapped codes) → REMAP to taxonomy
  → ALLOCATE points per class → STRATIFIED SAMPLE (fixed seed)

The reference is only a label source, never ground truth for evaluation.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, Literal, Mapping, Tuple

from ..contracts.core import BandName
from ..contracts.products import GeometryRef, SampleSet
from ..errors import NoSamplesError, RemapError
from ..ports.engine import RasterEnginePort

LOGGER = logging.getLogger(__name__)


def allocate_strata(available: Mapping[int, int], total: int, min_per_class: int = 0) -> Dict[int, int]:
    """
    Split `total` points across classes proportionally to their pixel counts.

    - every present class first gets min(min_per_class, total // n_classes) points
    - the rest is shared by largest remainder, weighted by prevalence
    - no class gets more points than it has pixels; the sum never exceeds total
    """
    avail = {int(c): int(n) for c, n in sorted(available.items()) if int(n) > 0}
    if total <= 0 or not avail:
        return {}

    floor = min(max(0, min_per_class), total // len(avail))
    alloc = {c: min(floor, n) for c, n in avail.items()}
    remaining = total - sum(alloc.values())

    while remaining > 0:
        spare = {c: avail[c] - alloc[c] for c in avail if avail[c] > alloc[c]}
        if not spare:
            break
        weight = float(sum(avail[c] for c in spare))
        quotas = {c: remaining * avail[c] / weight for c in spare}
        add = {c: min(int(math.floor(q)), spare[c]) for c, q in quotas.items()}
        given = sum(add.values())
        # largest remainder, ties broken by class id
        for c in sorted(spare, key=lambda k: (-(quotas[k] - math.floor(quotas[k])), k)):
            if given >= remaining:
                break
            if add[c] < spare[c]:
                add[c] += 1
                given += 1
        if given == 0:
            break
        for c, n in add.items():
            alloc[c] += n
        remaining -= given

    return {c: n for c, n in alloc.items() if n > 0}


@dataclass
class LabelSampler:
    engine: RasterEnginePort
    remap: Mapping[int, int]
    taxonomy: Tuple[int, ...]
    reference_asset: str = "ESA/WorldCover/v200/2021"
    reference_band: BandName = "Map"
    class_band: str = "class_auto"
    total_points: int = 500
    min_per_class: int = 5
    scale_m: float = 10.0
    seed: int = 42
    unmapped_policy: Literal["error", "mask"] = "error"
    required_classes: Tuple[int, ...] = field(default_factory=tuple)

    def sample(self, geometry: GeometryRef) -> SampleSet:
        eng = self.engine
        reference = eng.clip(eng.load_image(self.reference_asset, self.reference_band), geometry)

        counts = {
            int(k): int(v)
            for k, v in eng.frequency_histogram(reference, self.reference_band, geometry, self.scale_m).items()
            if int(v) > 0
        }
        if not counts:
            raise NoSamplesError(f"{self.reference_asset} has no coverage in the region")

        available = self._available_per_class(counts)
        if not available:
            raise NoSamplesError("no reference pixel in the region maps to the taxonomy")
        missing = sorted(set(self.required_classes) - set(available))
        if missing:
            raise NoSamplesError(f"required classes absent from the region: {missing}")

        allocation = allocate_strata(available, self.total_points, self.min_per_class)
        from_codes = sorted(self.remap)
        to_codes = [self.remap[c] for c in from_codes]
        labeled = eng.remap(reference, self.reference_band, from_codes, to_codes, self.class_band)
        samples = eng.stratified_sample(labeled, self.class_band, geometry, allocation, self.scale_m, self.seed)
        if not samples:
            raise NoSamplesError("stratified sampling returned no points")

        leaked = sorted({s.label for s in samples} - set(self.taxonomy))
        if leaked:
            raise RemapError(f"sampled labels outside the taxonomy: {leaked}")

        LOGGER.debug("sampled %d point(s), allocation=%s", len(samples), allocation)
        return SampleSet(
            samples=tuple(samples),
            allocation=dict(allocation),
            reference_counts=counts,
            label_name=self.class_band,
        )

    def _available_per_class(self, counts: Mapping[int, int]) -> Dict[int, int]:
        unmapped = sorted(set(counts) - set(self.remap))
        if unmapped:
            n_px = sum(counts[c] for c in unmapped)
            if self.unmapped_policy == "error":
                raise RemapError(f"reference codes {unmapped} ({n_px} px) are not in the remap table")
            LOGGER.warning("masking %d px with unmapped reference codes %s", n_px, unmapped)
        available: Dict[int, int] = {}
        for code, n in counts.items():
            if code in self.remap:
                target = int(self.remap[code])
                available[target] = available.get(target, 0) + n
        return dict(sorted(available.items()))


__all__ = ["LabelSampler", "allocate_strata"]
