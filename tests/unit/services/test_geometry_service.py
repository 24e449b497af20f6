import pytest
from shapely.geometry import MultiPolygon, Point, Polygon, box

from lulcplatform.adapters.local_engine import LocalRasterEngine
from lulcplatform.contracts.products import Region
from lulcplatform.errors import GeometryError
from lulcplatform.services.geometry_service import GeometryStabilizer


def test_multipart_region_is_dissolved():
    geom = MultiPolygon([box(0, 0, 100, 200), box(100, 0, 200, 200)])
    out = GeometryStabilizer(LocalRasterEngine()).stabilize(Region("A", geom))
    assert out.geometry.geom_type == "Polygon"
    assert out.geometry.area == pytest.approx(200 * 200)
    assert out.vertex_count == 5
    assert out.tolerance_m == 50.0


def test_dense_boundary_is_simplified_with_fixed_tolerance():
    circle = Point(1000, 1000).buffer(800, quad_segs=256)
    out = GeometryStabilizer(LocalRasterEngine(), tolerance_m=50.0).stabilize(Region("A", circle))
    assert out.vertex_count < len(circle.exterior.coords)
    assert out.geometry.is_valid


def test_empty_region_fails():
    with pytest.raises(GeometryError) as ei:
        GeometryStabilizer(LocalRasterEngine()).stabilize(Region("A", Polygon()))
    assert ei.value.kind == "geometry"


def test_too_many_vertices_fails_without_retry():
    calls = []

    class CountingEngine(LocalRasterEngine):
        def simplify(self, geometry, tolerance_m):
            calls.append(tolerance_m)
            return super().simplify(geometry, tolerance_m)

    # a 1 m tolerance keeps well over a hundred vertices on a 5 km circle
    circle = Point(0, 0).buffer(5000, quad_segs=256)
    with pytest.raises(GeometryError) as ei:
        GeometryStabilizer(CountingEngine(), tolerance_m=1.0, max_vertices=16).stabilize(Region("A", circle))
    assert ei.value.kind == "geometry"
    assert calls == [1.0]
