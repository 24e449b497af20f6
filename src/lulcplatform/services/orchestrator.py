# src/lulcplatform/services/orchestrator.py
from __future__ import annotations

"""
Per-region orchestration.

Each region is one task on a bounded thread pool (max_workers=1 reproduces the
strictly sequential behavior). Tasks share no mutable state: every task builds
its own RegionPipeline. Any failure is recorded in that region's outcome and
never aborts the other regions. Cancellation and timeouts are per region and are
checked between stages; a stage already submitted to the engine runs to completion.
"""

import logging
import threading
import time
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from ..config import Settings
from ..contracts.core import RunError, RunMeta, Stage
from ..contracts.products import (
    BatchResult, Region, RegionOutcome, RegionProduct, class_display,
)
from ..errors import BandMismatchError, RegionCancelledError, RegionError, RegionTimeoutError
from ..ports.engine import RasterEnginePort
from ..ports.sink import ResultSinkPort
from .classify_service import ClassifierApplier
from .composite_service import CompositeBuilder
from .geometry_service import GeometryStabilizer
from .sampling_service import LabelSampler
from .spectral_service import SpectralService
from .training_service import ClassifierTrainer

LOGGER = logging.getLogger(__name__)


class CancelToken:
    """Cooperative cancellation + deadline for one region task."""

    def __init__(self, timeout_s: Optional[float] = None):
        self._event = threading.Event()
        self._timeout_s = timeout_s
        self._deadline: Optional[float] = None
        self.stage: Optional[Stage] = None

    def start(self) -> None:
        if self._timeout_s is not None:
            self._deadline = time.monotonic() + float(self._timeout_s)

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def check(self, stage: Stage) -> None:
        self.stage = stage
        if self._event.is_set():
            raise RegionCancelledError(f"cancelled before {stage.value}", stage=stage)
        if self._deadline is not None and time.monotonic() > self._deadline:
            raise RegionTimeoutError(f"exceeded {self._timeout_s}s before {stage.value}", stage=stage)


@dataclass
class RegionPipeline:
    """Stabilize → composite → samples → train → classify, for one region."""
    engine: RasterEnginePort
    settings: Settings

    def __post_init__(self):
        s = self.settings
        self.stabilizer = GeometryStabilizer(self.engine, s.simplify_tolerance_m, s.max_vertices)
        self.composites = CompositeBuilder(
            engine=self.engine,
            collection_id=s.collection_id,
            bands=tuple(s.bands),
            spectral=SpectralService(self.engine, dict(s.indices)),
            scl_band=s.scl_band,
            invalid_codes=tuple(s.scl_invalid_codes),
            scale_m=s.scale_m,
            retry_attempts=s.date_retry_attempts,
            widen_days=s.date_retry_widen_days,
        )
        self.sampler = LabelSampler(
            engine=self.engine,
            remap=dict(s.remap),
            taxonomy=s.class_ids(),
            reference_asset=s.reference_asset,
            reference_band=s.reference_band,
            class_band=s.class_band,
            total_points=s.samples_per_region,
            min_per_class=s.min_samples_per_class,
            scale_m=s.scale_m,
            seed=s.seed,
            unmapped_policy=s.unmapped_policy,
            required_classes=tuple(s.required_classes),
        )
        self.trainer = ClassifierTrainer(self.engine, s.n_trees, s.seed, s.scale_m)
        self.applier = ClassifierApplier(self.engine, s.output_band)

    def run(self, region: Region, token: Optional[CancelToken] = None) -> RegionProduct:
        s = self.settings
        token = token or CancelToken()
        rid = region.region_id

        token.check(Stage.GEOMETRY)
        stable = self.stabilizer.stabilize(region)

        token.check(Stage.COMPOSITE)
        composite = self.composites.build(stable.geometry, s.window(), s.apply_cloud_mask)
        LOGGER.info(
            "region %s: composite %s over %d scene(s), masked=%s",
            rid, composite.window, composite.scene_count, composite.masked,
        )

        token.check(Stage.SAMPLES)
        samples = self.sampler.sample(stable.geometry)
        LOGGER.info("region %s: %d sample(s) %s", rid, len(samples), samples.class_counts())

        token.check(Stage.TRAIN)
        classifier = self.trainer.train(composite, s.feature_bands(), samples)

        token.check(Stage.CLASSIFY)
        labels = self.applier.apply(classifier, composite, stable.geometry)
        summary = None
        if s.summarize:
            summary = self.applier.summarize(labels, stable.geometry, s.classes, s.scale_m)

        # the last stage may have overrun the deadline too
        token.check(Stage.PUBLISH)

        return RegionProduct(
            region_id=rid,
            boundary=region.geometry,
            composite=composite,
            preview=self.engine.select(composite.image, s.rgb_bands),
            preview_vis={"bands": list(s.rgb_bands), "min": s.rgb_min, "max": s.rgb_max},
            classification=labels,
            class_vis=class_display(s.classes),
            samples=samples,
            classifier=classifier,
            summary=summary,
        )


class BatchRun:
    """Handle over a submitted batch: per-region cancel, blocking wait.

    Regions cancelled before they started never reach the worker, so `wait`
    hands their outcome to `publish` itself.
    """

    def __init__(
        self,
        order: Sequence[str],
        futures: Mapping[str, Future],
        tokens: Mapping[str, CancelToken],
        publish: Optional[Callable[[RegionOutcome], RegionOutcome]] = None,
    ):
        self._order = tuple(order)
        self._futures = dict(futures)
        self._tokens = dict(tokens)
        self._publish = publish
        self._unstarted: Dict[str, RegionOutcome] = {}

    def cancel(self, region_id: str) -> bool:
        """True if the region will not complete (pending cancelled or running flagged)."""
        fut = self._futures[region_id]
        self._tokens[region_id].cancel()
        return fut.cancel() or not fut.done()

    def done(self) -> bool:
        return all(f.done() for f in self._futures.values())

    def wait(self) -> BatchResult:
        outcomes: Dict[str, RegionOutcome] = {}
        for rid in self._order:
            try:
                outcomes[rid] = self._futures[rid].result()
            except CancelledError:
                if rid in self._unstarted:
                    outcomes[rid] = self._unstarted[rid]
                    continue
                outcome = RegionOutcome(
                    region_id=rid,
                    meta=RunMeta(region_id=rid).end_now(),
                    error=RunError(kind=RegionCancelledError.kind, message="cancelled before start"),
                )
                if self._publish is not None:
                    outcome = self._publish(outcome)
                outcomes[rid] = self._unstarted[rid] = outcome
        result = BatchResult(outcomes)
        LOGGER.info("batch finished: %d ok, %d failed", len(result.succeeded()), len(result.failed()))
        return result


@dataclass
class RegionOrchestrator:
    engine: RasterEnginePort
    settings: Settings
    sink: Optional[ResultSinkPort] = None
    pipeline_factory: Callable[[RasterEnginePort, Settings], RegionPipeline] = field(default=RegionPipeline)

    def run(self, regions: Iterable[Region]) -> BatchResult:
        return self.submit(regions).wait()

    def submit(self, regions: Iterable[Region]) -> BatchRun:
        items: List[Region] = list(regions)
        ids = [r.region_id for r in items]
        dupes = sorted({i for i in ids if ids.count(i) > 1})
        if dupes:
            raise ValueError(f"duplicated region ids: {dupes}")

        workers = max(1, min(self.settings.max_workers, len(items) or 1))
        LOGGER.info("submitting %d region(s) on %d worker(s)", len(items), workers)
        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="lulc-region")
        tokens: Dict[str, CancelToken] = {}
        futures: Dict[str, Future] = {}
        try:
            for region in items:
                token = CancelToken(self.settings.region_timeout_s)
                tokens[region.region_id] = token
                futures[region.region_id] = executor.submit(self._run_region, region, token)
        finally:
            # queued tasks keep running; the pool just stops accepting new ones
            executor.shutdown(wait=False)
        return BatchRun(ids, futures, tokens, publish=self._publish)

    # --------- per-task boundary ---------
    def _run_region(self, region: Region, token: CancelToken) -> RegionOutcome:
        rid = region.region_id
        meta = RunMeta(region_id=rid)
        token.start()
        LOGGER.info("region %s: start", rid)
        try:
            product = self.pipeline_factory(self.engine, self.settings).run(region, token)
        except RegionError as ex:
            LOGGER.warning("region %s failed at %s: %s", rid, _stage_name(ex.stage or token.stage), ex)
            outcome = self._failed(rid, meta, ex.to_run_error().model_copy(update={"stage": ex.stage or token.stage}))
        except BandMismatchError as ex:
            LOGGER.exception("region %s: band contract violated", rid)
            outcome = self._failed(rid, meta, ex.to_run_error())
        except Exception as ex:
            LOGGER.exception("region %s: engine failure at %s", rid, _stage_name(token.stage))
            outcome = self._failed(rid, meta, RunError(
                stage=token.stage, kind="engine", message=str(ex) or type(ex).__name__, detail=type(ex).__name__,
            ))
        else:
            LOGGER.info("region %s: done", rid)
            outcome = RegionOutcome(region_id=rid, meta=meta.end_now(), product=product)
        return self._publish(outcome)

    @staticmethod
    def _failed(rid: str, meta: RunMeta, error: RunError) -> RegionOutcome:
        return RegionOutcome(region_id=rid, meta=meta.end_now(), error=error)

    def _publish(self, outcome: RegionOutcome) -> RegionOutcome:
        if self.sink is None:
            return outcome
        try:
            self.sink.publish(outcome)
        except Exception as ex:
            LOGGER.exception("region %s: sink failed", outcome.region_id)
            return RegionOutcome(
                region_id=outcome.region_id,
                meta=outcome.meta,
                product=outcome.product,
                error=RunError(stage=Stage.PUBLISH, kind="publish", message=str(ex), detail=type(ex).__name__),
            )
        return outcome


def _stage_name(stage: Optional[Stage]) -> str:
    return stage.value if stage is not None else "start"


__all__ = ["RegionOrchestrator", "RegionPipeline", "BatchRun", "CancelToken"]
