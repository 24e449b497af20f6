# src/lulcplatform/services/geometry_service.py
from __future__ import annotations

import logging
from dataclasses import dataclass

from ..contracts.products import Region, StableGeometry
from ..errors import GeometryError
from ..ports.engine import RasterEnginePort

LOGGER = logging.getLogger(__name__)


@dataclass
class GeometryStabilizer:
    """
    Dissolve + fixed-tolerance simplify of a region boundary.
    The tolerance is never tuned per region: a boundary still too complex after
    simplification fails the region.
    """
    engine: RasterEnginePort
    tolerance_m: float = 50.0
    max_vertices: int = 100_000

    def stabilize(self, region: Region) -> StableGeometry:
        geom = self.engine.dissolve(region.geometry)
        geom = self.engine.simplify(geom, self.tolerance_m)
        n = self.engine.vertex_count(geom)
        if n == 0:
            raise GeometryError(
                f"region {region.region_id!r} is empty after simplify(tolerance={self.tolerance_m} m)"
            )
        if n > self.max_vertices:
            raise GeometryError(
                f"region {region.region_id!r} still has {n} vertices after "
                f"simplify(tolerance={self.tolerance_m} m); limit is {self.max_vertices}"
            )
        LOGGER.debug("region %s: stable geometry with %d vertices", region.region_id, n)
        return StableGeometry(geometry=geom, vertex_count=n, tolerance_m=self.tolerance_m)


__all__ = ["GeometryStabilizer"]
