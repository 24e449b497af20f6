import numpy as np
import pytest
from shapely.geometry import box

from lulcplatform.adapters.local_engine import LABEL_NODATA
from lulcplatform.config import S2_BANDS, Settings
from lulcplatform.contracts.core import DEFAULT_CLASSES
from lulcplatform.contracts.geo import validate_grid_compat
from lulcplatform.errors import BandMismatchError
from lulcplatform.services.classify_service import ClassifierApplier
from lulcplatform.services.composite_service import CompositeBuilder
from lulcplatform.services.sampling_service import LabelSampler
from lulcplatform.services.spectral_service import SpectralService
from lulcplatform.services.training_service import ClassifierTrainer
from tests.factories import COLLECTION, full_box, halves, make_engine

FEATURES = S2_BANDS + ("NDVI", "NDWI", "NDBI")


@pytest.fixture(scope="module")
def trained():
    s = Settings()
    codes = halves(10, 80)
    eng = make_engine(codes)
    comp = CompositeBuilder(eng, COLLECTION, S2_BANDS, SpectralService(eng)).build(full_box(), s.window())
    samples = LabelSampler(eng, s.remap, s.class_ids(), total_points=80).sample(full_box())
    clf = ClassifierTrainer(eng, n_trees=15).train(comp, FEATURES, samples)
    return eng, comp, clf


def test_vegetation_and_water_are_recovered(trained):
    eng, comp, clf = trained
    labels = ClassifierApplier(eng).apply(clf, comp, full_box())
    assert labels.names() == ("LULC",)
    arr = labels.bands["LULC"].data
    assert np.all(arr[:, :10] == 3)  # NDVI ~ 0.86 under tree cover
    assert np.all(arr[:, 10:] == 0)


def test_output_grid_matches_composite(trained):
    eng, comp, clf = trained
    labels = ClassifierApplier(eng).apply(clf, comp, box(0, 0, 100, 200))
    prof = labels.profile
    validate_grid_compat(prof, comp.image.profile)  # raises on mismatch
    assert prof.nodata == LABEL_NODATA
    arr = labels.bands["LULC"].data
    assert np.all(arr[:, 10:] == LABEL_NODATA)


def test_only_trained_classes_appear(trained):
    eng, comp, clf = trained
    arr = ClassifierApplier(eng).apply(clf, comp, full_box()).bands["LULC"].data
    assert set(np.unique(arr).tolist()) <= set(clf.classes) | {LABEL_NODATA}


def test_band_order_mismatch(trained):
    eng, comp, clf = trained
    with pytest.raises(BandMismatchError):
        ClassifierApplier(eng).apply(clf, comp, full_box(), feature_bands=tuple(reversed(FEATURES)))


def test_composite_missing_band(trained):
    eng, comp, clf = trained
    from dataclasses import replace
    thin = replace(comp, band_names=S2_BANDS, image=comp.image.select(S2_BANDS))
    with pytest.raises(BandMismatchError):
        ClassifierApplier(eng).apply(clf, thin, full_box())


def test_engine_rejects_wrong_feature_count(trained):
    eng, comp, clf = trained
    with pytest.raises(BandMismatchError):
        eng.classify(comp.image.select(S2_BANDS), clf.model, "LULC")


def test_summary(trained):
    eng, comp, clf = trained
    applier = ClassifierApplier(eng)
    labels = applier.apply(clf, comp, full_box())
    summary = applier.summarize(labels, full_box(), DEFAULT_CLASSES, 10.0)
    assert summary.counts == {0: 200, 3: 200}
    assert summary.percents == {0: pytest.approx(50.0), 3: pytest.approx(50.0)}
    assert summary.names[3] == "Woody vegetation"
    assert summary.palette[0] == (0x3B, 0x83, 0xBD)
