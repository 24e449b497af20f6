# src/lulcplatform/services/classify_service.py
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Optional, Sequence

from ..adapters.class_summary import ClassSummaryBuilder
from ..contracts.core import BandName, ClassLabel
from ..contracts.products import ClassSummary, Composite, GeometryRef, ImageRef, TrainedClassifier
from ..errors import BandMismatchError
from ..ports.engine import RasterEnginePort


"""
Classification raster from a trained per-region model.
  SELECT (same bands, same order as training) → CLASSIFY → CLIP → (SUMMARY)
"""


@dataclass
class ClassifierApplier:
    engine: RasterEnginePort
    output_band: str = "LULC"
    summaries: ClassSummaryBuilder = field(default_factory=ClassSummaryBuilder)

    def apply(
        self,
        classifier: TrainedClassifier,
        composite: Composite,
        geometry: GeometryRef,
        feature_bands: Optional[Sequence[BandName]] = None,
    ) -> ImageRef:
        bands = tuple(feature_bands) if feature_bands is not None else classifier.feature_names
        if bands != classifier.feature_names:
            raise BandMismatchError(f"inference bands {bands} != training bands {classifier.feature_names}")
        missing = [b for b in bands if b not in composite.band_names]
        if missing:
            raise BandMismatchError(f"composite lacks training bands {missing}")

        image = self.engine.select(composite.image, bands)
        got = tuple(self.engine.band_names(image))
        if got != bands:
            raise BandMismatchError(f"engine returned bands {got}, expected {bands}")

        labels = self.engine.classify(image, classifier.model, self.output_band)
        return self.engine.clip(labels, geometry)

    def summarize(
        self,
        labels: ImageRef,
        geometry: GeometryRef,
        classes: Sequence[ClassLabel],
        scale_m: float,
    ) -> ClassSummary:
        hist = self.engine.frequency_histogram(labels, self.output_band, geometry, scale_m)
        return self.summaries.from_histogram(hist, classes)


__all__ = ["ClassifierApplier"]
