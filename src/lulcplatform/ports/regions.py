# src/lulcplatform/ports/regions.py
from __future__ import annotations

from typing import Protocol, Sequence, runtime_checkable

from ..contracts.products import Region


@runtime_checkable
class RegionSourcePort(Protocol):
    """
    Ordered collection of regions to classify.
    Behind the port the origin can be an Earth Engine asset, a GeoJSON file, a DB...
    """
    def list_regions(self) -> Sequence[Region]: ...


__all__ = ["RegionSourcePort"]
