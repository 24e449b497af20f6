import threading
import time

import numpy as np
import pytest
from shapely.geometry import box

from lulcplatform.adapters.local_engine import LocalRasterEngine
from lulcplatform.contracts.core import Stage
from lulcplatform.errors import BandMismatchError, RegionCancelledError
from lulcplatform.services.orchestrator import CancelToken, RegionOrchestrator, RegionPipeline
from tests.factories import (
    COLLECTION, REFERENCE, halves, make_region, make_settings, reference_stack, scene_from_codes,
)

LEFT = box(0, 0, 100, 200)
RIGHT = box(100, 0, 200, 200)
NOWHERE = box(5000, 5000, 5100, 5100)


def _engine(cls=LocalRasterEngine, codes=None, **kw):
    codes = halves(10, 80) if codes is None else codes
    return cls(collections={COLLECTION: [scene_from_codes(codes)]}, assets={REFERENCE: reference_stack(codes)}, **kw)


class RecordingSink:
    def __init__(self):
        self.seen = []

    def publish(self, outcome):
        self.seen.append(outcome.region_id)


def test_single_region_product():
    s = make_settings()
    res = RegionOrchestrator(_engine(), s).run([make_region("A")])
    out = res["A"]
    assert out.ok and out.error is None
    p = out.product
    assert p.preview.names() == ("B4", "B3", "B2")
    assert p.preview_vis == {"bands": ["B4", "B3", "B2"], "min": 0.0, "max": 3000.0}
    assert p.class_vis["min"] == 0 and p.class_vis["max"] == 4 and len(p.class_vis["palette"]) == 5
    assert p.classifier.feature_names == s.feature_bands()
    assert p.composite.masked is True
    assert p.summary.counts == {0: 200, 3: 200}
    assert out.meta.duration_s is not None


def test_failure_is_isolated_and_order_kept():
    sink = RecordingSink()
    regions = [make_region("A", NOWHERE), make_region("B"), make_region("C", RIGHT)]
    res = RegionOrchestrator(_engine(), make_settings(max_workers=2), sink=sink).run(regions)
    assert list(res) == ["A", "B", "C"]
    assert res.succeeded() == ("B",)
    assert res.failed() == ("A", "C")
    err = res["A"].error
    assert err.kind == "no_imagery" and err.stage is Stage.COMPOSITE
    # C only covers water: a single class cannot train a classifier
    assert res["C"].error.kind == "training" and res["C"].error.stage is Stage.TRAIN
    assert sorted(sink.seen) == ["A", "B", "C"]


def test_runs_are_idempotent_and_parallel_matches_sequential():
    regions = [make_region("A"), make_region("B", box(0, 0, 200, 100))]
    seq = RegionOrchestrator(_engine(), make_settings(max_workers=1)).run(regions)
    again = RegionOrchestrator(_engine(), make_settings(max_workers=1)).run(regions)
    par = RegionOrchestrator(_engine(), make_settings(max_workers=2)).run(regions)
    for rid in ("A", "B"):
        a = seq[rid].product
        for other in (again[rid].product, par[rid].product):
            assert a.samples.samples == other.samples.samples
            np.testing.assert_array_equal(
                a.classification.bands["LULC"].data, other.classification.bands["LULC"].data
            )


def test_duplicated_ids_rejected():
    with pytest.raises(ValueError):
        RegionOrchestrator(_engine(), make_settings()).submit([make_region("A"), make_region("A", LEFT)])


def test_timeout_between_stages():
    class SlowEngine(LocalRasterEngine):
        def dissolve(self, geometry):
            time.sleep(0.3)
            return super().dissolve(geometry)

    s = make_settings(region_timeout_s=0.05)
    res = RegionOrchestrator(_engine(SlowEngine), s).run([make_region("A")])
    err = res["A"].error
    assert err.kind == "timeout"
    assert err.stage is Stage.COMPOSITE


def test_timeout_in_last_stage_fails_the_region():
    class SlowClassify(LocalRasterEngine):
        def classify(self, image, model, output_name):
            time.sleep(1.5)
            return super().classify(image, model, output_name)

    s = make_settings(region_timeout_s=1.0)
    out = RegionOrchestrator(_engine(SlowClassify), s).run([make_region("A")])["A"]
    assert not out.ok and out.product is None
    assert out.error.kind == "timeout"
    assert out.error.stage is Stage.PUBLISH


def test_cancel_running_and_pending_regions():
    started, release = threading.Event(), threading.Event()

    class BlockingEngine(LocalRasterEngine):
        def dissolve(self, geometry):
            started.set()
            release.wait(5)
            return super().dissolve(geometry)

    sink = RecordingSink()
    orch = RegionOrchestrator(_engine(BlockingEngine), make_settings(max_workers=1), sink=sink)
    batch = orch.submit([make_region("A"), make_region("B")])
    assert started.wait(5)
    assert batch.cancel("B") is True   # still queued
    assert batch.cancel("A") is True   # running: stops at the next stage check
    release.set()
    res = batch.wait()
    assert batch.done()
    assert res["A"].error.kind == "cancelled" and res["A"].error.stage is Stage.COMPOSITE
    assert res["B"].error.kind == "cancelled"
    # B never started but the sink still hears about it, once
    batch.wait()
    assert sorted(sink.seen) == ["A", "B"]


def test_unexpected_engine_error_is_recorded():
    class BrokenEngine(LocalRasterEngine):
        def median(self, collection):
            raise RuntimeError("backend unavailable")

    res = RegionOrchestrator(_engine(BrokenEngine), make_settings()).run([make_region("A"), make_region("B")])
    for rid in ("A", "B"):
        err = res[rid].error
        assert err.kind == "engine" and err.stage is Stage.COMPOSITE
        assert err.detail == "RuntimeError" and "backend unavailable" in err.message


def test_band_mismatch_recorded_at_region_boundary():
    class BadPipeline(RegionPipeline):
        def run(self, region, token=None):
            raise BandMismatchError("inference bands differ")

    res = RegionOrchestrator(_engine(), make_settings(), pipeline_factory=BadPipeline).run([make_region("A")])
    err = res["A"].error
    assert err.kind == "band_mismatch" and err.stage is Stage.CLASSIFY


def test_sink_failure_marks_region():
    class BrokenSink:
        def publish(self, outcome):
            raise IOError("disk full")

    res = RegionOrchestrator(_engine(), make_settings(), sink=BrokenSink()).run([make_region("A")])
    err = res["A"].error
    assert err.kind == "publish" and err.stage is Stage.PUBLISH
    assert res["A"].product is not None


def test_cancel_token():
    tok = CancelToken(timeout_s=None)
    tok.start()
    tok.check(Stage.GEOMETRY)
    assert tok.stage is Stage.GEOMETRY and not tok.cancelled
    tok.cancel()
    with pytest.raises(RegionCancelledError) as ei:
        tok.check(Stage.TRAIN)
    assert ei.value.kind == "cancelled" and ei.value.stage is Stage.TRAIN


def test_empty_batch():
    res = RegionOrchestrator(_engine(), make_settings()).run([])
    assert len(res) == 0 and res.to_frame().empty
