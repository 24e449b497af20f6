# src/lulcplatform/adapters/geojson_regions.py
from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, List, Mapping, Optional

from shapely.geometry import shape

from ..contracts.products import Region

GeometryFactory = Callable[[Mapping[str, Any]], Any]


def _features(obj: Mapping[str, Any]) -> List[Mapping[str, Any]]:
    # Accepts FeatureCollection / Feature / bare Geometry
    t = obj.get("type")
    if t == "FeatureCollection":
        return list(obj.get("features", []))
    if t == "Feature":
        return [obj]
    if "coordinates" in obj or t == "GeometryCollection":
        return [{"type": "Feature", "geometry": obj, "properties": {}}]
    raise ValueError(f"unrecognized GeoJSON object (type={t!r})")


@dataclass(frozen=True)
class GeoJsonRegionSource:
    """
    Regions from a GeoJSON file, one per feature, in file order.
    region_id = properties[name_field] (or 'region-<i>' when missing).
    geometry_factory turns the GeoJSON geometry into the engine's geometry handle;
    default is a shapely geometry (LocalRasterEngine). Use ee.Geometry for Earth Engine.
    """
    path: Path
    name_field: str = "NM_MUN"
    geometry_factory: Optional[GeometryFactory] = None

    def list_regions(self) -> List[Region]:
        obj = json.loads(Path(self.path).read_text(encoding="utf-8"))
        feats = _features(obj)
        if not feats:
            raise ValueError(f"empty GeoJSON: {self.path}")
        make = self.geometry_factory or shape

        out: List[Region] = []
        seen = set()
        for i, feat in enumerate(feats):
            geom = feat.get("geometry")
            if not geom:
                raise ValueError(f"feature {i} in {self.path} has no geometry")
            props = dict(feat.get("properties") or {})
            name = props.get(self.name_field)
            rid = str(name).strip() if name is not None else ""
            if not rid:
                rid = f"region-{i}"
            if rid in seen:
                raise ValueError(f"duplicated {self.name_field} value {rid!r} in {self.path}")
            seen.add(rid)
            out.append(Region(region_id=rid, geometry=make(geom), properties=props))
        return out


__all__ = ["GeoJsonRegionSource"]
