# src/lulcplatform/contracts/core.py
from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Sequence

from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt, field_validator, model_validator

# -------------------------
# Band names
# -------------------------
# Earth Engine naming for Sentinel-2 SR (B2..B12, B8A, SCL); indices are free names.
BandName = str
ClassId = NonNegativeInt

# -------------------------
# Typed colors
# -------------------------
class RGB8(BaseModel):
    model_config = ConfigDict(frozen=True)
    r: int = Field(200, ge=0, le=255)
    g: int = Field(200, ge=0, le=255)
    b: int = Field(200, ge=0, le=255)

    def as_tuple(self) -> tuple[int, int, int]: return (self.r, self.g, self.b)
    def to_hex(self) -> str: return f"#{self.r:02X}{self.g:02X}{self.b:02X}"

    @classmethod
    def from_hex(cls, value: str) -> "RGB8":
        s = value.strip().lstrip("#")
        if len(s) != 6:
            raise ValueError(f"invalid hex color: {value}")
        return cls(r=int(s[0:2], 16), g=int(s[2:4], 16), b=int(s[4:6], 16))

# -------------------------
# Target taxonomy
# -------------------------
class ClassLabel(BaseModel):
    model_config = ConfigDict(frozen=True)
    id: ClassId
    name: str
    color: RGB8 = RGB8()

    @field_validator("name")
    @classmethod
    def _non_empty(cls, v: str) -> str:
        v2 = v.strip()
        if not v2:
            raise ValueError("name must not be empty")
        return v2

    @field_validator("color", mode="before")
    @classmethod
    def _hex_color(cls, v):
        return RGB8.from_hex(v) if isinstance(v, str) else v


DEFAULT_CLASSES: tuple[ClassLabel, ...] = (
    ClassLabel(id=0, name="Water", color=RGB8.from_hex("#3b83bd")),
    ClassLabel(id=1, name="Built-up", color=RGB8.from_hex("#8c8c8c")),
    ClassLabel(id=2, name="Bare ground", color=RGB8.from_hex("#c8a165")),
    ClassLabel(id=3, name="Woody vegetation", color=RGB8.from_hex("#2ca25f")),
    ClassLabel(id=4, name="Herbaceous / cropland", color=RGB8.from_hex("#a1d99b")),
)


def palette_hex(classes: Sequence[ClassLabel]) -> list[str]:
    """Palette ordered by class id, as expected by min/max display stretches."""
    return [c.color.to_hex() for c in sorted(classes, key=lambda c: c.id)]

# -------------------------
# Date window
# -------------------------
class DateWindow(BaseModel):
    """Half-open acquisition window [start, end)."""
    model_config = ConfigDict(frozen=True)
    start: date
    end: date

    @model_validator(mode="after")
    def _ordered(self) -> "DateWindow":
        if self.end <= self.start:
            raise ValueError(f"end ({self.end}) must be after start ({self.start})")
        return self

    def widen(self, days: int) -> "DateWindow":
        delta = timedelta(days=int(days))
        return DateWindow(start=self.start - delta, end=self.end + delta)

    def __str__(self) -> str:
        return f"{self.start.isoformat()}..{self.end.isoformat()}"

# -------------------------
# Runs / audit
# -------------------------
class Stage(str, Enum):
    GEOMETRY = "geometry"
    COMPOSITE = "composite"
    SAMPLES = "samples"
    TRAIN = "train"
    CLASSIFY = "classify"
    PUBLISH = "publish"


class RunMeta(BaseModel):
    model_config = ConfigDict(frozen=True)
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    region_id: str
    notes: str | None = None
    ended_at: datetime | None = None

    def end_now(self) -> "RunMeta":
        return self.model_copy(update={"ended_at": datetime.now(timezone.utc)})

    @property
    def duration_s(self) -> float | None:
        if self.ended_at is None:
            return None
        return (self.ended_at - self.started_at).total_seconds()


class RunError(BaseModel):
    model_config = ConfigDict(frozen=True)
    stage: Stage | None = None
    kind: str
    message: str
    detail: str | None = None
