# src/lulcplatform/contracts/geo.py

from __future__ import annotations
import math
from dataclasses import dataclass
from typing import Any, Literal, NamedTuple, Optional, Tuple

import numpy as np
import numpy.typing as npt

GeoTransform = Tuple[float, float, float, float, float, float]
DTypeStr = Literal["uint8", "uint16", "int16", "uint32", "int32", "float32", "float64"]


class Bounds(NamedTuple):
    minx: float; miny: float; maxx: float; maxy: float


# ---------- CRS (pure domain, no GDAL) ----------
@dataclass(frozen=True)
class CRSRef:
    wkt: Optional[str] = None
    epsg: Optional[int] = None

    @staticmethod
    def from_epsg(code: int) -> "CRSRef":
        return CRSRef(epsg=int(code))

    def equals(self, other: "CRSRef") -> bool:
        """EPSG codes compare as ints, WKT compares whitespace-normalized; mixed is False."""
        if self is other:
            return True
        if self.epsg is not None and other.epsg is not None:
            return int(self.epsg) == int(other.epsg)
        if self.wkt and other.wkt:
            return " ".join(self.wkt.upper().split()) == " ".join(other.wkt.upper().split())
        return False


# ---------- Grid profile and raster ----------
@dataclass(frozen=True)
class GeoProfile:
    count: int
    dtype: DTypeStr
    width: int
    height: int
    transform: GeoTransform
    crs: CRSRef
    nodata: Optional[float] = None

    @property
    def bounds(self) -> Bounds:
        return geotransform_bounds(self.transform, self.width, self.height)

    def pixel_size(self) -> Tuple[float, float]:
        _, px, _, _, _, py = self.transform
        return (px, py)

    def resolution(self) -> float:
        px, py = self.pixel_size()
        return min(abs(px), abs(py))

    def with_dtype(self, dtype: DTypeStr, nodata: Optional[float]) -> "GeoProfile":
        return GeoProfile(self.count, dtype, self.width, self.height, self.transform, self.crs, nodata)

    def with_count(self, count: int) -> "GeoProfile":
        return GeoProfile(count, self.dtype, self.width, self.height, self.transform, self.crs, self.nodata)


@dataclass(frozen=True)
class GeoRaster:
    """Single-band raster. Float rasters use NaN as the mask; integer rasters use profile.nodata."""
    data: "npt.NDArray[Any]"  # type: ignore[valid-type]
    profile: GeoProfile

    def __post_init__(self):
        if self.data.ndim != 2:
            raise ValueError(f"GeoRaster expects a 2D array, got ndim={self.data.ndim}")
        if self.data.shape != (self.profile.height, self.profile.width):
            raise ValueError(
                f"array shape {self.data.shape} does not match profile "
                f"({self.profile.height}, {self.profile.width})"
            )
        # read-only buffer: rasters are shared between stages
        self.data.setflags(write=False)

    @property
    def shape(self) -> Tuple[int, ...]:
        return self.data.shape  # type: ignore[no-any-return]

    def valid_mask(self) -> np.ndarray:
        if self.data.dtype.kind == "f":
            return np.isfinite(self.data)
        if self.profile.nodata is None:
            return np.ones(self.data.shape, dtype=bool)
        return self.data != self.profile.nodata

    def as_float(self) -> np.ndarray:
        """Writable float32 copy with NaN where the raster is masked."""
        out = self.data.astype(np.float32, copy=True)
        out[~self.valid_mask()] = np.nan
        return out


# ---------- GeoTransform helpers (GDAL ordering, no GDAL dependency) ----------
def geotransform_bounds(gt: GeoTransform, width: int, height: int) -> Bounds:
    x0, px, rx, y0, ry, py = gt
    x_w = x0 + width * px + height * rx
    y_w = y0 + width * ry + height * py
    minx, maxx = (x0, x_w) if x0 <= x_w else (x_w, x0)
    miny, maxy = (y_w, y0) if y_w <= y0 else (y0, y_w)
    return Bounds(minx, miny, maxx, maxy)


def pixel_to_world(col: float, row: float, gt: GeoTransform) -> Tuple[float, float]:
    x0, px, rx, y0, ry, py = gt
    return x0 + col * px + row * rx, y0 + col * ry + row * py


def world_to_pixel(x: float, y: float, gt: GeoTransform) -> Tuple[float, float]:
    x0, px, rx, y0, ry, py = gt
    det = px * py - rx * ry
    if abs(det) < 1e-18:
        raise ValueError("GeoTransform is not invertible (det≈0).")
    dx = x - x0; dy = y - y0
    col = (py * dx - rx * dy) / det
    row = (-ry * dx + px * dy) / det
    return col, row


def _gt_close(a: GeoTransform, b: GeoTransform, tol: float = 1e-6) -> bool:
    return all(math.isclose(x, y, rel_tol=0.0, abs_tol=tol) for x, y in zip(a, b))


def validate_grid_compat(a: GeoProfile, b: GeoProfile) -> None:
    if not a.crs.equals(b.crs):
        raise ValueError("CRS mismatch.")
    if a.width != b.width or a.height != b.height:
        raise ValueError(f"Dimension mismatch: {a.width}x{a.height} vs {b.width}x{b.height}")
    if not _gt_close(a.transform, b.transform):
        raise ValueError("GeoTransform mismatch (needs resampling/alignment).")


__all__ = [
    "GeoTransform", "Bounds", "CRSRef", "GeoProfile", "GeoRaster", "geotransform_bounds",
    "pixel_to_world", "world_to_pixel", "validate_grid_compat", "DTypeStr",
]
