# src/lulcplatform/adapters/local_engine.py
from __future__ import annotations

import math
import warnings
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Mapping, Optional, Sequence, Tuple

import numpy as np
import shapely
from rasterio.features import geometry_mask
from rasterio.transform import Affine
from shapely.geometry import box
from shapely.ops import unary_union
from sklearn.ensemble import RandomForestClassifier

from ..contracts.core import BandName, DateWindow
from ..contracts.geo import GeoProfile, GeoRaster, pixel_to_world, validate_grid_compat, world_to_pixel
from ..contracts.products import BandStack, LabeledSample, TrainingTable
from ..errors import BandMismatchError

LABEL_NODATA = 255


@dataclass(frozen=True)
class Scene:
    scene_id: str
    acquired: date
    image: BandStack


@dataclass(frozen=True)
class SceneCollection:
    scenes: Tuple[Scene, ...] = ()

    def __len__(self) -> int:
        return len(self.scenes)


# ---------------- raster helpers ----------------

def _float_profile(p: GeoProfile) -> GeoProfile:
    return p.with_dtype("float32", None).with_count(1)


def _masked(r: GeoRaster, keep: np.ndarray) -> GeoRaster:
    """Copy of r with pixels outside `keep` masked (NaN, or nodata for integer rasters)."""
    if r.data.dtype.kind != "f" and r.profile.nodata is not None:
        out = r.data.copy()
        out[~keep] = r.profile.nodata
        return GeoRaster(data=out, profile=r.profile)
    out = r.as_float()
    out[~keep] = np.nan
    return GeoRaster(data=out, profile=_float_profile(r.profile))


def _region_mask(profile: GeoProfile, region) -> np.ndarray:
    """True for pixels whose center falls inside region."""
    shape = (profile.height, profile.width)
    if region is None or region.is_empty:
        return np.zeros(shape, dtype=bool)
    return geometry_mask(
        [region],
        out_shape=shape,
        transform=Affine.from_gdal(*profile.transform),
        invert=True,
    )


def _check_scale(profile: GeoProfile, scale_m: float) -> None:
    # no resampling here: the grid must already be at the requested scale
    if not math.isclose(profile.resolution(), float(scale_m), rel_tol=1e-6):
        raise ValueError(f"grid resolution {profile.resolution()} m != requested scale {scale_m} m")


def _footprint(profile: GeoProfile):
    return box(*profile.bounds)


# ---------------- engine ----------------

@dataclass
class LocalRasterEngine:
    """
    In-process engine over numpy rasters on a shared projected grid.

    - collections: collection_id -> scenes (each a BandStack, same grid)
    - assets: asset_id -> single-grid reference images
    - geometries are shapely objects in the grid CRS (meters)
    Used for tests and for offline runs over already-downloaded scenes.
    """
    collections: Mapping[str, Sequence[Scene]] = field(default_factory=dict)
    assets: Mapping[str, BandStack] = field(default_factory=dict)
    vote_chunk: int = 65536

    # --- geometry ---
    def dissolve(self, geometry):
        return unary_union(geometry)

    def simplify(self, geometry, tolerance_m: float):
        return geometry.simplify(float(tolerance_m), preserve_topology=True)

    def vertex_count(self, geometry) -> int:
        if geometry is None or geometry.is_empty:
            return 0
        return int(shapely.get_num_coordinates(geometry))

    # --- imagery ---
    def image_collection(self, collection_id: str, window: DateWindow, region) -> SceneCollection:
        if collection_id not in self.collections:
            raise KeyError(f"unknown collection {collection_id}")
        picked = tuple(
            s for s in self.collections[collection_id]
            if window.start <= s.acquired < window.end
            and _footprint(s.image.profile).intersects(region)
        )
        return SceneCollection(tuple(sorted(picked, key=lambda s: (s.acquired, s.scene_id))))

    def collection_size(self, collection: SceneCollection) -> int:
        return len(collection)

    def mask_by_codes(self, collection: SceneCollection, band: BandName, invalid_codes: Sequence[int]) -> SceneCollection:
        codes = np.asarray(list(invalid_codes))
        out = []
        for s in collection.scenes:
            qa = s.image.bands[band]
            keep = qa.valid_mask() & ~np.isin(qa.data, codes)
            masked = BandStack({n: _masked(r, keep) for n, r in s.image.bands.items()})
            out.append(Scene(s.scene_id, s.acquired, masked))
        return SceneCollection(tuple(out))

    def count_valid(self, collection: SceneCollection, region, scale_m: float) -> int:
        n = 0
        for s in collection.scenes:
            prof = s.image.profile
            _check_scale(prof, scale_m)
            inside = _region_mask(prof, region)
            if any(np.any(r.valid_mask() & inside) for r in s.image.bands.values()):
                n += 1
        return n

    def median(self, collection: SceneCollection) -> BandStack:
        if not collection.scenes:
            raise ValueError("median of an empty collection")
        first = collection.scenes[0].image
        for s in collection.scenes[1:]:
            validate_grid_compat(first.profile, s.image.profile)
        out: Dict[BandName, GeoRaster] = {}
        for name in first.names():
            cube = np.stack([s.image.bands[name].as_float() for s in collection.scenes], axis=0)
            with warnings.catch_warnings():
                # all-NaN pixels stay NaN
                warnings.simplefilter("ignore", RuntimeWarning)
                med = np.nanmedian(cube, axis=0).astype(np.float32)
            out[name] = GeoRaster(data=med, profile=_float_profile(first.profile))
        return BandStack(out)

    def clip(self, image: BandStack, region) -> BandStack:
        inside = _region_mask(image.profile, region)
        return BandStack({n: _masked(r, inside & r.valid_mask()) for n, r in image.bands.items()})

    def select(self, image: BandStack, bands: Sequence[BandName]) -> BandStack:
        return image.select(tuple(bands))

    def band_names(self, image: BandStack) -> Tuple[BandName, ...]:
        return image.names()

    def normalized_difference(self, image: BandStack, a: BandName, b: BandName, name: str) -> BandStack:
        fa = image.bands[a].as_float()
        fb = image.bands[b].as_float()
        total = fa + fb
        with np.errstate(divide="ignore", invalid="ignore"):
            nd = (fa - fb) / total
        nd[total == 0] = 0.0
        return BandStack({name: GeoRaster(data=nd.astype(np.float32), profile=_float_profile(image.profile))})

    def add_bands(self, image: BandStack, others: Sequence[BandStack]) -> BandStack:
        merged = image
        for other in others:
            merged = merged.with_bands(other.bands)
        return merged

    # --- reference raster ---
    def load_image(self, asset_id: str, band: BandName) -> BandStack:
        if asset_id not in self.assets:
            raise KeyError(f"unknown asset {asset_id}")
        return self.assets[asset_id].select((band,))

    def frequency_histogram(self, image: BandStack, band: BandName, region, scale_m: float) -> Dict[int, int]:
        r = image.bands[band]
        _check_scale(r.profile, scale_m)
        keep = _region_mask(r.profile, region) & r.valid_mask()
        values, counts = np.unique(r.data[keep].astype(np.int64), return_counts=True)
        return {int(v): int(c) for v, c in zip(values.tolist(), counts.tolist())}

    def remap(
        self,
        image: BandStack,
        band: BandName,
        from_codes: Sequence[int],
        to_codes: Sequence[int],
        name: str,
    ) -> BandStack:
        if len(from_codes) != len(to_codes):
            raise ValueError("from_codes and to_codes must have the same length")
        r = image.bands[band]
        valid = r.valid_mask()
        out = np.full(r.shape, np.nan, dtype=np.float32)
        for src, dst in zip(from_codes, to_codes):
            out[valid & (r.data == src)] = float(dst)
        return BandStack({name: GeoRaster(data=out, profile=_float_profile(r.profile))})

    def stratified_sample(
        self,
        image: BandStack,
        class_band: BandName,
        region,
        class_points: Mapping[int, int],
        scale_m: float,
        seed: int,
    ) -> Tuple[LabeledSample, ...]:
        r = image.bands[class_band]
        _check_scale(r.profile, scale_m)
        keep = _region_mask(r.profile, region) & r.valid_mask()
        gt = r.profile.transform
        rng = np.random.default_rng(seed)
        out = []
        for cls in sorted(class_points):
            n = int(class_points[cls])
            if n <= 0:
                continue
            rows, cols = np.nonzero(keep & (r.data == cls))
            if rows.size == 0:
                continue
            pick = np.sort(rng.choice(rows.size, size=min(n, rows.size), replace=False))
            for i in pick.tolist():
                x, y = pixel_to_world(cols[i] + 0.5, rows[i] + 0.5, gt)
                out.append(LabeledSample(x=float(x), y=float(y), label=int(cls)))
        return tuple(out)

    # --- learning ---
    def sample_at(
        self,
        image: BandStack,
        samples: Sequence[LabeledSample],
        label_name: str,
        scale_m: float,
    ) -> TrainingTable:
        prof = image.profile
        _check_scale(prof, scale_m)
        names = image.names()
        cube = image.stack(names)
        rows, labels = [], []
        for s in samples:
            col, row = world_to_pixel(s.x, s.y, prof.transform)
            c, r = int(math.floor(col)), int(math.floor(row))
            if not (0 <= r < prof.height and 0 <= c < prof.width):
                continue
            values = cube[:, r, c]
            if not np.all(np.isfinite(values)):
                continue
            rows.append(values.astype(np.float64))
            labels.append(int(s.label))
        X = np.vstack(rows) if rows else np.empty((0, len(names)), dtype=np.float64)
        return TrainingTable(
            X=X,
            y=np.asarray(labels, dtype=np.int32),
            feature_names=names,
            label_name=label_name,
            dropped=len(samples) - len(rows),
        )

    def train_random_forest(self, table: TrainingTable, n_trees: int, seed: int) -> RandomForestClassifier:
        model = RandomForestClassifier(n_estimators=int(n_trees), random_state=int(seed), n_jobs=1)
        model.fit(table.X, table.y)
        return model

    def classify(self, image: BandStack, model: RandomForestClassifier, output_name: str) -> BandStack:
        prof = image.profile
        cube = image.stack()
        n_feat = cube.shape[0]
        if n_feat != model.n_features_in_:
            raise BandMismatchError(f"image has {n_feat} bands, model expects {model.n_features_in_}")
        classes = np.asarray(model.classes_)
        if classes.max() >= LABEL_NODATA or classes.min() < 0:
            raise ValueError(f"class ids must be in [0, {LABEL_NODATA}), got {classes.tolist()}")

        flat = cube.reshape(n_feat, -1).T
        valid = np.all(np.isfinite(flat), axis=1)
        labels = np.full(flat.shape[0], LABEL_NODATA, dtype=np.uint8)
        idx = np.flatnonzero(valid)
        for start in range(0, idx.size, max(1, self.vote_chunk)):
            part = idx[start:start + self.vote_chunk]
            labels[part] = classes[self._majority_vote(model, flat[part], classes.size)]

        out = GeoRaster(
            data=labels.reshape(prof.height, prof.width),
            profile=prof.with_dtype("uint8", LABEL_NODATA).with_count(1),
        )
        return BandStack({output_name: out})

    @staticmethod
    def _majority_vote(model: RandomForestClassifier, X: np.ndarray, n_classes: int) -> np.ndarray:
        # one vote per tree; predict() would average probabilities instead
        votes = np.zeros((X.shape[0], n_classes), dtype=np.int32)
        rows = np.arange(X.shape[0])
        for tree in model.estimators_:
            votes[rows, tree.predict(X).astype(np.intp)] += 1
        return votes.argmax(axis=1)


__all__ = ["LocalRasterEngine", "Scene", "SceneCollection", "LABEL_NODATA"]
