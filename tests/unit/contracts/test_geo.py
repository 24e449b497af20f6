import numpy as np
import pytest
from lulcplatform.contracts.geo import (
    CRSRef, GeoProfile, GeoRaster, pixel_to_world, validate_grid_compat, world_to_pixel,
)

def test_georaster_immutable_buffer():
    p = GeoProfile(count=1, dtype="uint16", width=4, height=3,
                   transform=(0,10,0,0,0,-10), crs=CRSRef.from_epsg(32719))
    r = GeoRaster(np.zeros((3,4), dtype=np.uint16), p)
    with pytest.raises((ValueError, RuntimeError)):
        r.data[...] = 1

def test_georaster_shape_must_match_profile():
    p = GeoProfile(1, "float32", 4, 3, (0,10,0,0,0,-10), CRSRef.from_epsg(32719))
    with pytest.raises(ValueError):
        GeoRaster(np.zeros((4,3), dtype=np.float32), p)
    with pytest.raises(ValueError):
        GeoRaster(np.zeros((1,3,4), dtype=np.float32), p)

def test_validate_grid_tolerance():
    a = GeoProfile(1,"uint16",2,2,(0,10,0,0,0,-10),CRSRef.from_epsg(32719))
    b = GeoProfile(1,"uint16",2,2,(1e-7,10,0,0,0,-10),CRSRef.from_epsg(32719))
    validate_grid_compat(a,b)  # does not raise
    c = GeoProfile(1,"uint16",2,2,(5,10,0,0,0,-10),CRSRef.from_epsg(32719))
    with pytest.raises(ValueError):
        validate_grid_compat(a,c)
    d = GeoProfile(1,"uint16",2,2,(0,10,0,0,0,-10),CRSRef.from_epsg(4326))
    with pytest.raises(ValueError):
        validate_grid_compat(a,d)

def test_crs_equals():
    assert CRSRef.from_epsg(32719).equals(CRSRef(epsg=32719))
    assert not CRSRef.from_epsg(32719).equals(CRSRef.from_epsg(4326))
    assert CRSRef(wkt='GEOGCS["x"]').equals(CRSRef(wkt=' geogcs["X"] '))
    assert not CRSRef.from_epsg(4326).equals(CRSRef(wkt='GEOGCS["x"]'))

def test_pixel_world_conversion():
    gt = (100.0, 10.0, 0.0, 500.0, 0.0, -10.0)
    assert pixel_to_world(0.5, 0.5, gt) == (105.0, 495.0)
    col, row = world_to_pixel(105.0, 495.0, gt)
    assert (col, row) == pytest.approx((0.5, 0.5))

def test_valid_mask_float_and_int():
    pf = GeoProfile(1, "float32", 2, 1, (0,10,0,0,0,-10), CRSRef.from_epsg(32719))
    rf = GeoRaster(np.array([[1.0, np.nan]], dtype=np.float32), pf)
    assert rf.valid_mask().tolist() == [[True, False]]

    pi = GeoProfile(1, "uint8", 2, 1, (0,10,0,0,0,-10), CRSRef.from_epsg(32719), nodata=255)
    ri = GeoRaster(np.array([[3, 255]], dtype=np.uint8), pi)
    assert ri.valid_mask().tolist() == [[True, False]]
    out = ri.as_float()
    assert out[0, 0] == 3.0 and np.isnan(out[0, 1])
    out[0, 0] = 7.0  # copy is writable
    assert ri.data[0, 0] == 3

def test_profile_bounds():
    p = GeoProfile(1, "float32", 20, 20, (0,10,0,200,0,-10), CRSRef.from_epsg(32719))
    assert tuple(p.bounds) == (0.0, 0.0, 200.0, 200.0)
    assert p.resolution() == 10.0
