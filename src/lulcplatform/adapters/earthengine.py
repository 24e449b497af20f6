# src/lulcplatform/adapters/earthengine.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import ee
import numpy as np
import shapely
from shapely.geometry import shape

from ..contracts.core import BandName, DateWindow
from ..contracts.products import LabeledSample, Region, RegionOutcome, TrainingTable

LOGGER = logging.getLogger(__name__)

MAX_PIXELS = 1e13


def init_earthengine(project: Optional[str] = None) -> None:
    """ee.Initialize, with the interactive flow only when no credentials are cached."""
    try:
        ee.Initialize(project=project)
    except ee.EEException:
        LOGGER.info("no cached Earth Engine credentials; starting authentication")
        ee.Authenticate()
        ee.Initialize(project=project)


@dataclass
class EarthEngineAdapter:
    """
    RasterEnginePort on Google Earth Engine. Handles are ee.Geometry / ee.Image /
    ee.ImageCollection / ee.Classifier; only methods returning python values call getInfo().
    """
    project: Optional[str] = None
    initialize: bool = True

    def __post_init__(self):
        if self.initialize:
            init_earthengine(self.project)

    # --- geometry ---
    def dissolve(self, geometry: ee.Geometry) -> ee.Geometry:
        return ee.Geometry(geometry).dissolve()

    def simplify(self, geometry: ee.Geometry, tolerance_m: float) -> ee.Geometry:
        return ee.Geometry(geometry).simplify(maxError=float(tolerance_m))

    def vertex_count(self, geometry: ee.Geometry) -> int:
        info = ee.Geometry(geometry).getInfo()
        if not info:
            return 0
        geom = shape(info)
        return 0 if geom.is_empty else int(shapely.get_num_coordinates(geom))

    # --- imagery ---
    def image_collection(self, collection_id: str, window: DateWindow, region: ee.Geometry) -> ee.ImageCollection:
        return (
            ee.ImageCollection(collection_id)
            .filterDate(window.start.isoformat(), window.end.isoformat())
            .filterBounds(region)
        )

    def collection_size(self, collection: ee.ImageCollection) -> int:
        return int(collection.size().getInfo())

    def mask_by_codes(self, collection: ee.ImageCollection, band: BandName, invalid_codes: Sequence[int]) -> ee.ImageCollection:
        codes = [int(c) for c in invalid_codes]
        if not codes:
            return collection

        def _mask(img):
            qa = img.select(band)
            bad = qa.eq(codes[0])
            for code in codes[1:]:
                bad = bad.Or(qa.eq(code))
            return img.updateMask(bad.Not())

        return collection.map(_mask)

    def count_valid(self, collection: ee.ImageCollection, region: ee.Geometry, scale_m: float) -> int:
        def _flag(img):
            any_valid = img.select(0).mask().reduceRegion(
                reducer=ee.Reducer.anyNonZero(),
                geometry=region,
                scale=scale_m,
                maxPixels=MAX_PIXELS,
            ).values().get(0)
            return img.set("lulc_valid", any_valid)

        flagged = collection.map(_flag).filter(ee.Filter.eq("lulc_valid", 1))
        return int(flagged.size().getInfo())

    def median(self, collection: ee.ImageCollection) -> ee.Image:
        return collection.median()

    def clip(self, image: ee.Image, region: ee.Geometry) -> ee.Image:
        return ee.Image(image).clip(region)

    def select(self, image: ee.Image, bands: Sequence[BandName]) -> ee.Image:
        return ee.Image(image).select(list(bands))

    def band_names(self, image: ee.Image) -> Tuple[BandName, ...]:
        return tuple(ee.Image(image).bandNames().getInfo())

    def normalized_difference(self, image: ee.Image, a: BandName, b: BandName, name: str) -> ee.Image:
        return ee.Image(image).normalizedDifference([a, b]).rename(name)

    def add_bands(self, image: ee.Image, others: Sequence[ee.Image]) -> ee.Image:
        out = ee.Image(image)
        for other in others:
            out = out.addBands(other)
        return out

    # --- reference raster ---
    def load_image(self, asset_id: str, band: BandName) -> ee.Image:
        return ee.Image(asset_id).select(band)

    def frequency_histogram(self, image: ee.Image, band: BandName, region: ee.Geometry, scale_m: float) -> Dict[int, int]:
        hist = ee.Image(image).select(band).reduceRegion(
            reducer=ee.Reducer.frequencyHistogram().unweighted(),
            geometry=region,
            scale=scale_m,
            maxPixels=MAX_PIXELS,
        ).get(band).getInfo() or {}
        # keys come back as strings ("10", "10.0")
        return {int(float(k)): int(round(v)) for k, v in hist.items()}

    def remap(
        self,
        image: ee.Image,
        band: BandName,
        from_codes: Sequence[int],
        to_codes: Sequence[int],
        name: str,
    ) -> ee.Image:
        # no defaultValue: unlisted codes are masked
        return ee.Image(image).remap(list(from_codes), list(to_codes), None, band).rename(name)

    def stratified_sample(
        self,
        image: ee.Image,
        class_band: BandName,
        region: ee.Geometry,
        class_points: Mapping[int, int],
        scale_m: float,
        seed: int,
    ) -> Tuple[LabeledSample, ...]:
        classes = sorted(int(c) for c, n in class_points.items() if int(n) > 0)
        if not classes:
            return ()
        fc = ee.Image(image).stratifiedSample(
            numPoints=0,
            classBand=class_band,
            region=region,
            scale=scale_m,
            seed=int(seed),
            classValues=classes,
            classPoints=[int(class_points[c]) for c in classes],
            geometries=True,
        )
        out = []
        for feat in fc.getInfo().get("features", []):
            x, y = feat["geometry"]["coordinates"][:2]
            out.append(LabeledSample(x=float(x), y=float(y), label=int(feat["properties"][class_band])))
        return tuple(out)

    # --- learning ---
    def sample_at(
        self,
        image: ee.Image,
        samples: Sequence[LabeledSample],
        label_name: str,
        scale_m: float,
    ) -> TrainingTable:
        names = self.band_names(image)
        points = ee.FeatureCollection([
            ee.Feature(ee.Geometry.Point([s.x, s.y]), {label_name: int(s.label)}) for s in samples
        ])
        info = ee.Image(image).sampleRegions(
            collection=points,
            properties=[label_name],
            scale=scale_m,
        ).getInfo()
        rows, labels = [], []
        for feat in info.get("features", []):
            props = feat.get("properties", {})
            values = [props.get(n) for n in names]
            if any(v is None for v in values) or props.get(label_name) is None:
                continue
            rows.append(values)
            labels.append(int(props[label_name]))
        X = np.asarray(rows, dtype=np.float64) if rows else np.empty((0, len(names)), dtype=np.float64)
        return TrainingTable(
            X=X,
            y=np.asarray(labels, dtype=np.int32),
            feature_names=names,
            label_name=label_name,
            dropped=len(samples) - len(rows),
        )

    def train_random_forest(self, table: TrainingTable, n_trees: int, seed: int) -> ee.Classifier:
        features = ee.FeatureCollection([
            ee.Feature(None, {**dict(zip(table.feature_names, map(float, row))), table.label_name: int(label)})
            for row, label in zip(table.X.tolist(), table.y.tolist())
        ])
        return ee.Classifier.smileRandomForest(numberOfTrees=int(n_trees), seed=int(seed)).train(
            features=features,
            classProperty=table.label_name,
            inputProperties=list(table.feature_names),
        )

    def classify(self, image: ee.Image, model: ee.Classifier, output_name: str) -> ee.Image:
        return ee.Image(image).classify(model, output_name)


@dataclass(frozen=True)
class EarthEngineRegionSource:
    """One Region per feature of an Earth Engine FeatureCollection asset, in asset order."""
    asset_id: str
    name_field: str = "NM_MUN"

    def list_regions(self) -> List[Region]:
        fc = ee.FeatureCollection(self.asset_id)
        n = int(fc.size().getInfo())
        features = fc.toList(n)
        # one entry per feature: a missing name becomes "" and stays aligned with its geometry
        key = self.name_field
        names = features.map(lambda f: ee.Feature(f).toDictionary().get(key, "")).getInfo()
        out: List[Region] = []
        seen = set()
        for i, name in enumerate(names):
            rid = str(name).strip() if name is not None else ""
            if not rid:
                rid = f"region-{i}"
            if rid in seen:
                raise ValueError(f"duplicated {self.name_field} value {rid!r} in {self.asset_id}")
            seen.add(rid)
            geom = ee.Feature(features.get(i)).geometry()
            out.append(Region(region_id=rid, geometry=geom, properties={self.name_field: name}))
        return out


@dataclass
class EarthEngineMapSink:
    """
    Publishes map tile URLs for each successful region: boundary outline,
    RGB preview and classification. Failed regions are only logged.
    """
    tiles: Dict[str, Dict[str, str]] = field(default_factory=dict)

    def publish(self, outcome: RegionOutcome) -> None:
        if not outcome.ok:
            LOGGER.info("region %s: nothing to publish (%s)", outcome.region_id, outcome.error.kind if outcome.error else "?")
            return
        p = outcome.product
        outline = ee.FeatureCollection([ee.Feature(p.boundary)]).style(color="red", fillColor="00000000", width=2)
        self.tiles[p.region_id] = {
            "boundary": self._url(outline, {}),
            "rgb": self._url(p.preview, p.preview_vis),
            "lulc": self._url(p.classification, p.class_vis),
        }
        LOGGER.info("region %s: tiles published", p.region_id)

    @staticmethod
    def _url(image: Any, vis: Mapping[str, Any]) -> str:
        return ee.Image(image).getMapId(dict(vis))["tile_fetcher"].url_format


__all__ = ["EarthEngineAdapter", "EarthEngineRegionSource", "EarthEngineMapSink", "init_earthengine"]
