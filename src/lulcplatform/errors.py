# src/lulcplatform/errors.py
from __future__ import annotations

from typing import Optional

from .contracts.core import RunError, Stage


class LulcError(Exception):
    """Base for every error raised by the pipeline."""
    kind: str = "error"
    stage: Optional[Stage] = None

    def __init__(self, message: str, *, stage: Optional[Stage] = None):
        super().__init__(message)
        if stage is not None:
            self.stage = stage

    def to_run_error(self, detail: Optional[str] = None) -> RunError:
        return RunError(stage=self.stage, kind=self.kind, message=str(self), detail=detail)


class RegionError(LulcError):
    """Recoverable at the region boundary: the region fails, the batch goes on."""
    kind = "region"


class GeometryError(RegionError):
    kind = "geometry"
    stage = Stage.GEOMETRY


class NoImageryError(RegionError):
    kind = "no_imagery"
    stage = Stage.COMPOSITE


class NoSamplesError(RegionError):
    kind = "no_samples"
    stage = Stage.SAMPLES


class RemapError(RegionError):
    """Reference codes outside the remap table, or remapped labels outside the taxonomy."""
    kind = "remap"
    stage = Stage.SAMPLES


class TrainingError(RegionError):
    kind = "training"
    stage = Stage.TRAIN


class RegionTimeoutError(RegionError):
    kind = "timeout"


class RegionCancelledError(RegionError):
    kind = "cancelled"


class BandMismatchError(LulcError, ValueError):
    """Inference bands differ from training bands. Contract violation, never retried."""
    kind = "band_mismatch"
    stage = Stage.CLASSIFY


__all__ = [
    "LulcError", "RegionError", "GeometryError", "NoImageryError", "NoSamplesError",
    "RemapError", "TrainingError", "RegionTimeoutError", "RegionCancelledError",
    "BandMismatchError",
]
