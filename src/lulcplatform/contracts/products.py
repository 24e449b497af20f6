from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .core import BandName, ClassLabel, DateWindow, RunError, RunMeta, palette_hex
from .geo import GeoProfile, GeoRaster, validate_grid_compat

# Engine handles are opaque to the services: shapely/BandStack locally, ee.* remotely.
GeometryRef = Any
ImageRef = Any
ModelRef = Any


# ----------------------
# Local raster stack
# ----------------------

@dataclass(frozen=True)
class BandStack:
    """
    Ordered named bands on one grid.
    - Immutable at runtime; insertion order is the band order.
    """
    bands: Mapping[BandName, GeoRaster]

    def __post_init__(self):
        d = dict(self.bands)
        if not d:
            raise ValueError("BandStack needs at least one band")
        it = iter(d.values())
        first = next(it)
        for r in it:
            validate_grid_compat(first.profile, r.profile)
        object.__setattr__(self, "bands", MappingProxyType(d))

    @property
    def profile(self) -> GeoProfile:
        return next(iter(self.bands.values())).profile

    def names(self) -> Tuple[BandName, ...]:
        return tuple(self.bands.keys())

    def require(self, required: Iterable[BandName]) -> None:
        missing = [b for b in required if b not in self.bands]
        if missing:
            raise KeyError(f"Missing required bands: {missing}")

    def select(self, names: Sequence[BandName]) -> BandStack:
        self.require(names)
        return BandStack({n: self.bands[n] for n in names})

    def with_bands(self, extra: Mapping[BandName, GeoRaster]) -> BandStack:
        merged = dict(self.bands)
        merged.update(extra)
        return BandStack(merged)

    def stack(self, order: Optional[Sequence[BandName]] = None) -> np.ndarray:
        """(F, H, W) float32 with NaN where masked."""
        order = tuple(order) if order is not None else self.names()
        self.require(order)
        return np.stack([self.bands[n].as_float() for n in order], axis=0)


# ----------------------
# Pipeline entities
# ----------------------

@dataclass(frozen=True)
class Region:
    region_id: str
    geometry: GeometryRef
    properties: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not str(self.region_id).strip():
            raise ValueError("region_id must not be empty")


@dataclass(frozen=True)
class StableGeometry:
    geometry: GeometryRef
    vertex_count: int
    tolerance_m: float


@dataclass(frozen=True)
class Composite:
    image: ImageRef
    band_names: Tuple[BandName, ...]
    window: DateWindow
    masked: bool
    scene_count: int
    valid_scene_count: int
    date_retries: int = 0


@dataclass(frozen=True)
class LabeledSample:
    x: float
    y: float
    label: int


@dataclass(frozen=True)
class SampleSet:
    samples: Tuple[LabeledSample, ...]
    allocation: Mapping[int, int]
    reference_counts: Mapping[int, int]
    label_name: str

    def __len__(self) -> int:
        return len(self.samples)

    def __iter__(self) -> Iterator[LabeledSample]:
        return iter(self.samples)

    def labels(self) -> Tuple[int, ...]:
        return tuple(s.label for s in self.samples)

    def class_counts(self) -> Dict[int, int]:
        out: Dict[int, int] = {}
        for s in self.samples:
            out[s.label] = out.get(s.label, 0) + 1
        return dict(sorted(out.items()))


@dataclass(frozen=True)
class TrainingTable:
    X: np.ndarray  # (N, F) float64
    y: np.ndarray  # (N,) int32
    feature_names: Tuple[BandName, ...]
    label_name: str
    dropped: int = 0

    @property
    def n_rows(self) -> int:
        return int(self.X.shape[0]) if self.X.ndim == 2 else 0

    def classes(self) -> Tuple[int, ...]:
        return tuple(int(c) for c in np.unique(self.y))


@dataclass(frozen=True)
class TrainedClassifier:
    model: ModelRef
    feature_names: Tuple[BandName, ...]
    classes: Tuple[int, ...]
    n_samples: int


@dataclass(frozen=True)
class ClassSummary:
    """Per-class pixel counts/percentages of a classification raster."""
    counts: Mapping[int, int]
    percents: Mapping[int, float]
    palette: Mapping[int, Tuple[int, int, int]]
    names: Mapping[int, str]


@dataclass(frozen=True)
class RegionProduct:
    """What the visualization/export collaborator receives for one region."""
    region_id: str
    boundary: GeometryRef
    composite: Composite
    preview: ImageRef
    preview_vis: Mapping[str, Any]
    classification: ImageRef
    class_vis: Mapping[str, Any]
    samples: SampleSet
    classifier: TrainedClassifier
    summary: Optional[ClassSummary] = None


@dataclass(frozen=True)
class RegionOutcome:
    region_id: str
    meta: RunMeta
    product: Optional[RegionProduct] = None
    error: Optional[RunError] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.product is not None


@dataclass(frozen=True)
class BatchResult(Mapping[str, RegionOutcome]):
    """region_id -> outcome, in input order."""
    outcomes: Mapping[str, RegionOutcome]

    def __getitem__(self, key: str) -> RegionOutcome:
        return self.outcomes[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self.outcomes)

    def __len__(self) -> int:
        return len(self.outcomes)

    def succeeded(self) -> Tuple[str, ...]:
        return tuple(k for k, o in self.outcomes.items() if o.ok)

    def failed(self) -> Tuple[str, ...]:
        return tuple(k for k, o in self.outcomes.items() if not o.ok)

    def to_frame(self) -> pd.DataFrame:
        rows = []
        for rid, o in self.outcomes.items():
            p = o.product
            rows.append({
                "region": rid,
                "status": "ok" if o.ok else "failed",
                "stage": o.error.stage.value if o.error and o.error.stage else None,
                "error": o.error.kind if o.error else None,
                "message": o.error.message if o.error else None,
                "window": str(p.composite.window) if p else None,
                "masked": p.composite.masked if p else None,
                "scenes": p.composite.scene_count if p else None,
                "samples": len(p.samples) if p else None,
                "date_retries": p.composite.date_retries if p else None,
                "duration_s": o.meta.duration_s,
            })
        return pd.DataFrame(rows, columns=[
            "region", "status", "stage", "error", "message", "window",
            "masked", "scenes", "samples", "date_retries", "duration_s",
        ])


def class_display(classes: Sequence[ClassLabel]) -> Dict[str, Any]:
    ids = sorted(c.id for c in classes)
    return {
        "min": ids[0] if ids else 0,
        "max": ids[-1] if ids else 0,
        "palette": palette_hex(classes),
    }
