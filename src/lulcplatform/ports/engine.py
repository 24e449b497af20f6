# src/lulcplatform/ports/engine.py
from __future__ import annotations

from typing import Any, Dict, Mapping, Protocol, Sequence, Tuple, runtime_checkable

from ..contracts.core import BandName, DateWindow
from ..contracts.products import GeometryRef, ImageRef, LabeledSample, ModelRef, TrainingTable

CollectionRef = Any


@runtime_checkable
class RasterEnginePort(Protocol):
    """
    Raster/vector processing engine that executes the image algebra and the
    learning primitives. The services describe WHAT to compute; the engine decides
    where (Earth Engine server-side, or in-process numpy).

    Rules:
      - Handles (geometry/image/collection/model) are opaque outside the adapter.
      - Methods returning python values (int, dict, tuple, TrainingTable) block
        until the computation is materialized.
      - Geometry lengths (tolerance, scale) are in meters.
    """

    # --- geometry ---
    def dissolve(self, geometry: GeometryRef) -> GeometryRef: ...
    def simplify(self, geometry: GeometryRef, tolerance_m: float) -> GeometryRef: ...
    def vertex_count(self, geometry: GeometryRef) -> int: ...

    # --- imagery ---
    def image_collection(self, collection_id: str, window: DateWindow, region: GeometryRef) -> CollectionRef: ...
    def collection_size(self, collection: CollectionRef) -> int: ...
    def mask_by_codes(self, collection: CollectionRef, band: BandName, invalid_codes: Sequence[int]) -> CollectionRef: ...
    def count_valid(self, collection: CollectionRef, region: GeometryRef, scale_m: float) -> int:
        """Number of images with at least one unmasked pixel inside region."""
        ...
    def median(self, collection: CollectionRef) -> ImageRef: ...
    def clip(self, image: ImageRef, region: GeometryRef) -> ImageRef: ...
    def select(self, image: ImageRef, bands: Sequence[BandName]) -> ImageRef: ...
    def band_names(self, image: ImageRef) -> Tuple[BandName, ...]: ...
    def normalized_difference(self, image: ImageRef, a: BandName, b: BandName, name: str) -> ImageRef: ...
    def add_bands(self, image: ImageRef, others: Sequence[ImageRef]) -> ImageRef: ...

    # --- reference raster ---
    def load_image(self, asset_id: str, band: BandName) -> ImageRef: ...
    def frequency_histogram(self, image: ImageRef, band: BandName, region: GeometryRef, scale_m: float) -> Dict[int, int]: ...
    def remap(self, image: ImageRef, band: BandName, from_codes: Sequence[int], to_codes: Sequence[int], name: str) -> ImageRef:
        """Codes absent from from_codes come out masked."""
        ...
    def stratified_sample(
        self,
        image: ImageRef,
        class_band: BandName,
        region: GeometryRef,
        class_points: Mapping[int, int],
        scale_m: float,
        seed: int,
    ) -> Tuple[LabeledSample, ...]: ...

    # --- learning ---
    def sample_at(self, image: ImageRef, samples: Sequence[LabeledSample], label_name: str, scale_m: float) -> TrainingTable:
        """Nearest-pixel values of every band of image at each sample; masked rows dropped."""
        ...
    def train_random_forest(self, table: TrainingTable, n_trees: int, seed: int) -> ModelRef: ...
    def classify(self, image: ImageRef, model: ModelRef, output_name: str) -> ImageRef: ...


__all__ = ["RasterEnginePort", "CollectionRef"]
