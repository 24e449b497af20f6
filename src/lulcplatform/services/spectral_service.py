# src/lulcplatform/services/spectral_service.py
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Mapping, Sequence, Tuple

from ..contracts.core import BandName
from ..contracts.products import ImageRef
from ..ports.engine import RasterEnginePort

# (A - B) / (A + B), Earth Engine band naming
DEFAULT_INDICES: Mapping[str, Tuple[BandName, BandName]] = {
    "NDVI": ("B8", "B4"),   # vegetation
    "NDWI": ("B3", "B8"),   # water (McFeeters)
    "NDBI": ("B11", "B8"),  # built-up
}


@dataclass
class SpectralService:
    """
    Normalized-difference features appended to a composite.
    - Indices are dimensionless ratios in [-1, 1] for non-negative reflectance.
    - The engine computes them; this service only fixes names, pairs and order.
    """
    engine: RasterEnginePort
    indices: Mapping[str, Tuple[BandName, BandName]] = field(default_factory=lambda: dict(DEFAULT_INDICES))

    def index_names(self) -> Tuple[str, ...]:
        return tuple(self.indices.keys())

    def required_bands(self) -> Tuple[BandName, ...]:
        seen: list[BandName] = []
        for a, b in self.indices.values():
            for band in (a, b):
                if band not in seen:
                    seen.append(band)
        return tuple(seen)

    def add_indices(self, image: ImageRef, available: Sequence[BandName]) -> ImageRef:
        missing = [b for b in self.required_bands() if b not in available]
        if missing:
            raise KeyError(f"Indices {self.index_names()} need bands {missing}")
        derived = [
            self.engine.normalized_difference(image, a, b, name)
            for name, (a, b) in self.indices.items()
        ]
        if not derived:
            return image
        return self.engine.add_bands(image, derived)


__all__ = ["SpectralService", "DEFAULT_INDICES"]
