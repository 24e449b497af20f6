# src/lulcplatform/ports/sink.py
from __future__ import annotations

from typing import Protocol, runtime_checkable

from ..contracts.products import RegionOutcome


@runtime_checkable
class ResultSinkPort(Protocol):
    """
    Visualization/export collaborator. Receives every finished region (success or failure).
    Typical adapters: map tile publisher, notebook map, file exporter.
    """
    def publish(self, outcome: RegionOutcome) -> None: ...


__all__ = ["ResultSinkPort"]
