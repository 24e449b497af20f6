# src/lulcplatform/services/composite_service.py
from __future__ import annotations

"""
Composite construction per region, contracts-first.
Pipeline:
  QUERY → (MASK by scene classification) → FALLBACK check → MEDIAN → SELECT → CLIP → INDICES

Mask fallback: when masking leaves no image with a valid pixel inside the region,
the unmasked collection is used instead. Checked once per region, never per pixel.
An empty collection (even unmasked) is a NoImageryError; an optional, logged,
bounded retry widens the date window.
"""

import logging
from dataclasses import dataclass
from typing import Tuple

from ..contracts.core import BandName, DateWindow
from ..contracts.products import Composite, GeometryRef
from ..errors import NoImageryError
from ..ports.engine import RasterEnginePort
from .spectral_service import SpectralService

LOGGER = logging.getLogger(__name__)


@dataclass
class CompositeBuilder:
    engine: RasterEnginePort
    collection_id: str
    bands: Tuple[BandName, ...]
    spectral: SpectralService
    scl_band: BandName = "SCL"
    invalid_codes: Tuple[int, ...] = (1, 3, 8, 9, 10, 11)
    scale_m: float = 10.0
    retry_attempts: int = 0
    widen_days: int = 15

    def build(self, geometry: GeometryRef, window: DateWindow, apply_mask: bool = True) -> Composite:
        current = window
        retries = 0
        while True:
            try:
                return self._build_once(geometry, current, apply_mask, retries)
            except NoImageryError:
                if retries >= self.retry_attempts:
                    raise
                retries += 1
                wider = current.widen(self.widen_days)
                LOGGER.warning(
                    "no imagery in %s for %s; widening window to %s (retry %d/%d)",
                    self.collection_id, current, wider, retries, self.retry_attempts,
                )
                current = wider

    def feature_bands(self) -> Tuple[BandName, ...]:
        return tuple(self.bands) + self.spectral.index_names()

    # --------- internal phases ---------
    def _build_once(self, geometry: GeometryRef, window: DateWindow, apply_mask: bool, retries: int) -> Composite:
        eng = self.engine
        collection = eng.image_collection(self.collection_id, window, geometry)
        n = eng.collection_size(collection)
        if n == 0:
            suffix = f" after {retries} widening(s)" if retries else ""
            raise NoImageryError(f"no scenes in {self.collection_id} for {window}{suffix}")

        selected, masked, valid = collection, False, n
        if apply_mask:
            masked_collection = eng.mask_by_codes(collection, self.scl_band, self.invalid_codes)
            valid = eng.count_valid(masked_collection, geometry, self.scale_m)
            if valid > 0:
                selected, masked = masked_collection, True
            else:
                LOGGER.warning(
                    "cloud mask leaves 0/%d scenes with valid pixels for %s; using unmasked collection",
                    n, window,
                )
        LOGGER.debug("composite over %d scene(s) (%d valid), masked=%s", n, valid, masked)

        image = eng.median(selected)
        image = eng.select(image, self.bands)
        image = eng.clip(image, geometry)
        image = self.spectral.add_indices(image, self.bands)
        return Composite(
            image=image,
            band_names=self.feature_bands(),
            window=window,
            masked=masked,
            scene_count=n,
            valid_scene_count=valid,
            date_retries=retries,
        )


__all__ = ["CompositeBuilder"]
