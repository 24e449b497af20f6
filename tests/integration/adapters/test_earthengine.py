# tests/integration/adapters/test_earthengine.py
import os
import pytest

ee = pytest.importorskip("ee")

from lulcplatform.adapters.earthengine import EarthEngineAdapter
from lulcplatform.config import Settings
from lulcplatform.contracts.products import Region
from lulcplatform.ports.engine import RasterEnginePort
from lulcplatform.services.orchestrator import RegionOrchestrator

pytestmark = [
    pytest.mark.integration,
    pytest.mark.ee,
    pytest.mark.skipif(not os.environ.get("LULC_EE_PROJECT"), reason="needs LULC_EE_PROJECT and EE credentials"),
]


@pytest.fixture(scope="module")
def engine():
    return EarthEngineAdapter(project=os.environ["LULC_EE_PROJECT"])


@pytest.fixture(scope="module")
def small_region():
    # ~2 km square with water and vegetation (Lake Paranoá shore, Brasília)
    return ee.Geometry.Rectangle([-47.86, -15.80, -47.84, -15.78])


def test_adapter_implements_port(engine):
    assert isinstance(engine, RasterEnginePort)


def test_reference_histogram_and_remap(engine, small_region):
    s = Settings()
    ref = engine.clip(engine.load_image(s.reference_asset, s.reference_band), small_region)
    hist = engine.frequency_histogram(ref, s.reference_band, small_region, 10.0)
    assert hist and all(code in s.remap for code in hist)
    labeled = engine.remap(ref, s.reference_band, sorted(s.remap), [s.remap[c] for c in sorted(s.remap)], s.class_band)
    classes = engine.frequency_histogram(labeled, s.class_band, small_region, 10.0)
    assert set(classes) <= set(s.class_ids())


def test_one_region_end_to_end(engine, small_region):
    s = Settings(n_trees=20, samples_per_region=100, ee_project=os.environ["LULC_EE_PROJECT"])
    res = RegionOrchestrator(engine, s).run([Region("paranoa", small_region)])
    out = res["paranoa"]
    assert out.ok, out.error
    assert engine.band_names(out.product.classification) == (s.output_band,)
    assert set(out.product.summary.counts) <= set(s.class_ids())
