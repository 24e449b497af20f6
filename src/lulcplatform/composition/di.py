from __future__ import annotations
from pathlib import Path
from typing import Optional
import json
import yaml

from ..config import Settings
from ..contracts.core import ClassLabel
from ..ports.engine import RasterEnginePort
from ..ports.regions import RegionSourcePort
from ..ports.sink import ResultSinkPort
from ..services.orchestrator import RegionOrchestrator

def load_settings_from_yaml(path: Path) -> Settings:
    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    return Settings(**data)

def load_class_labels(path: Path) -> tuple[ClassLabel, ...]:
    # [{"id": 0, "name": "Water", "color": "#3b83bd" | {"r":..,"g":..,"b":..}}, ...]
    items = json.loads(path.read_text(encoding="utf-8"))
    return tuple(
        ClassLabel(id=int(it["id"]), name=str(it["name"]), color=it.get("color", {}))
        for it in items
    )

def build_settings(project_root: Path) -> Settings:
    """<root>/00-Config/settings.yaml, then class_labels.json next to it overrides the taxonomy."""
    cfg = (project_root / "00-Config" / "settings.yaml").resolve()
    st = load_settings_from_yaml(cfg) if cfg.exists() else Settings()
    labels_json = (project_root / "00-Config" / "class_labels.json").resolve()
    if labels_json.exists():
        # re-validate: remap targets must still fall inside the new taxonomy
        st = Settings(**{**st.model_dump(), "classes": load_class_labels(labels_json)})
    return st

def build_engine(settings: Settings) -> RasterEnginePort:
    from ..adapters.earthengine import EarthEngineAdapter
    return EarthEngineAdapter(project=settings.ee_project)

def build_region_source(settings: Settings, geojson: Optional[Path] = None) -> RegionSourcePort:
    if geojson is not None:
        import ee
        from ..adapters.geojson_regions import GeoJsonRegionSource
        return GeoJsonRegionSource(path=geojson, name_field=settings.region_name_field, geometry_factory=ee.Geometry)
    if not settings.regions_asset:
        raise ValueError("no regions: set LULC_REGIONS_ASSET (or regions_asset in settings.yaml) or pass a GeoJSON")
    from ..adapters.earthengine import EarthEngineRegionSource
    return EarthEngineRegionSource(asset_id=settings.regions_asset, name_field=settings.region_name_field)

def build_orchestrator(settings: Settings, engine: RasterEnginePort, sink: Optional[ResultSinkPort] = None) -> RegionOrchestrator:
    return RegionOrchestrator(engine=engine, settings=settings, sink=sink)
