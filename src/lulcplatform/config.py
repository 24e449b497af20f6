# src/lulcplatform/config.py
from __future__ import annotations

from datetime import date
from functools import lru_cache
from types import MappingProxyType
from typing import Dict, Literal, Mapping, Optional, Tuple

from pydantic import Field, PositiveFloat, PositiveInt, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .contracts.core import DEFAULT_CLASSES, BandName, ClassLabel, DateWindow

# ESA WorldCover v200 -> target taxonomy (0 water, 1 built-up, 2 bare, 3 woody, 4 herbaceous)
WORLDCOVER_REMAP: Mapping[int, int] = MappingProxyType({
    10: 3,   # tree cover
    20: 3,   # shrubland
    30: 4,   # grassland
    40: 4,   # cropland
    50: 1,   # built-up
    60: 2,   # bare / sparse vegetation
    70: 3,   # snow and ice
    80: 0,   # permanent water bodies
    90: 3,   # herbaceous wetland
    95: 3,   # mangroves
    100: 3,  # moss and lichen
})

# Sentinel-2 SCL: 1 saturated/defective, 3 cloud shadow, 8/9 cloud, 10 cirrus, 11 snow/ice
SCL_INVALID_CODES: Tuple[int, ...] = (1, 3, 8, 9, 10, 11)

S2_BANDS: Tuple[BandName, ...] = ("B2", "B3", "B4", "B5", "B6", "B7", "B8", "B8A", "B11", "B12")


class Settings(BaseSettings):
    """
    Unified pipeline configuration. Does not touch disk.
    Built by composition/di.py (CLI) and passed down explicitly; services never read globals.
    """
    # --- imagery ---
    collection_id: str = "COPERNICUS/S2_SR_HARMONIZED"
    bands: Tuple[BandName, ...] = S2_BANDS
    date_start: date = date(2025, 7, 10)
    date_end: date = date(2025, 7, 30)
    apply_cloud_mask: bool = True
    scl_band: BandName = "SCL"
    scl_invalid_codes: Tuple[int, ...] = SCL_INVALID_CODES
    # name -> (A, B) for (A - B) / (A + B)
    indices: Dict[str, Tuple[BandName, BandName]] = Field(default_factory=lambda: {
        "NDVI": ("B8", "B4"),
        "NDWI": ("B3", "B8"),
        "NDBI": ("B11", "B8"),
    })

    # --- geometry ---
    simplify_tolerance_m: PositiveFloat = 50.0
    max_vertices: PositiveInt = 100_000

    # --- labels ---
    reference_asset: str = "ESA/WorldCover/v200/2021"
    reference_band: BandName = "Map"
    remap: Dict[int, int] = Field(default_factory=lambda: dict(WORLDCOVER_REMAP))
    unmapped_policy: Literal["error", "mask"] = "error"
    class_band: str = "class_auto"
    classes: Tuple[ClassLabel, ...] = DEFAULT_CLASSES
    samples_per_region: PositiveInt = 500
    min_samples_per_class: int = Field(5, ge=0)
    required_classes: Tuple[int, ...] = ()
    scale_m: PositiveFloat = 10.0
    seed: int = 42

    # --- model ---
    n_trees: PositiveInt = 200
    output_band: str = "LULC"

    # --- outputs ---
    rgb_bands: Tuple[BandName, BandName, BandName] = ("B4", "B3", "B2")
    rgb_min: float = 0.0
    rgb_max: float = 3000.0
    summarize: bool = True

    # --- execution ---
    max_workers: PositiveInt = 4
    region_timeout_s: Optional[PositiveFloat] = None
    date_retry_attempts: int = Field(0, ge=0)
    date_retry_widen_days: int = Field(15, ge=0)

    # --- region source / engine ---
    regions_asset: Optional[str] = None
    region_name_field: str = "NM_MUN"
    ee_project: Optional[str] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="LULC_",
        env_nested_delimiter="__",
        extra="forbid",
        frozen=True,
    )

    # ----------------------------
    # Normalizers / validators
    # ----------------------------
    @field_validator("collection_id", "reference_asset", "class_band", "output_band", mode="before")
    @classmethod
    def _non_empty(cls, v: str) -> str:
        v2 = str(v).strip()
        if not v2:
            raise ValueError("must not be empty")
        return v2

    @field_validator("bands")
    @classmethod
    def _unique_bands(cls, v: Tuple[BandName, ...]) -> Tuple[BandName, ...]:
        if not v:
            raise ValueError("bands must not be empty")
        if len(set(v)) != len(v):
            raise ValueError(f"duplicated bands: {v}")
        return v

    @field_validator("classes")
    @classmethod
    def _unique_classes(cls, v: Tuple[ClassLabel, ...]) -> Tuple[ClassLabel, ...]:
        ids = [c.id for c in v]
        if not ids:
            raise ValueError("classes must not be empty")
        if len(set(ids)) != len(ids):
            raise ValueError(f"duplicated class ids: {ids}")
        return tuple(sorted(v, key=lambda c: c.id))

    @model_validator(mode="after")
    def _check_coherence(self) -> "Settings":
        if self.date_end <= self.date_start:
            raise ValueError(f"date_end ({self.date_end}) must be after date_start ({self.date_start})")
        known = set(self.bands)
        for name, (a, b) in self.indices.items():
            if name in known:
                raise ValueError(f"index {name} collides with a raw band name")
            missing = {a, b} - known
            if missing:
                raise ValueError(f"index {name} uses bands not listed in bands: {sorted(missing)}")
        missing_rgb = set(self.rgb_bands) - known
        if missing_rgb:
            raise ValueError(f"rgb_bands not listed in bands: {sorted(missing_rgb)}")
        ids = set(self.class_ids())
        bad_targets = sorted(set(self.remap.values()) - ids)
        if bad_targets:
            raise ValueError(f"remap targets outside the taxonomy: {bad_targets}")
        bad_required = sorted(set(self.required_classes) - ids)
        if bad_required:
            raise ValueError(f"required_classes outside the taxonomy: {bad_required}")
        return self

    # ----------------------------
    # Pure helpers
    # ----------------------------
    def window(self) -> DateWindow:
        return DateWindow(start=self.date_start, end=self.date_end)

    def feature_bands(self) -> Tuple[BandName, ...]:
        """Classifier inputs: raw bands then indices, in that order."""
        return tuple(self.bands) + tuple(self.indices.keys())

    def class_ids(self) -> Tuple[int, ...]:
        return tuple(c.id for c in self.classes)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Cached instance. Use ONLY from composition/di.py or the CLI, never from services/.
    Tests must clear it: get_settings.cache_clear()
    """
    return Settings()
