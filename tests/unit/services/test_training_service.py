import numpy as np
import pytest

from lulcplatform.config import S2_BANDS, Settings
from lulcplatform.contracts.products import LabeledSample, SampleSet, TrainingTable
from lulcplatform.errors import BandMismatchError, TrainingError
from lulcplatform.services.composite_service import CompositeBuilder
from lulcplatform.services.sampling_service import LabelSampler
from lulcplatform.services.spectral_service import SpectralService
from lulcplatform.services.training_service import ClassifierTrainer
from tests.factories import COLLECTION, full_box, halves, make_engine

FEATURES = S2_BANDS + ("NDVI", "NDWI", "NDBI")


def _inputs(codes, total_points=60):
    s = Settings()
    eng = make_engine(codes)
    comp = CompositeBuilder(eng, COLLECTION, S2_BANDS, SpectralService(eng)).build(full_box(), s.window())
    samples = LabelSampler(eng, s.remap, s.class_ids(), total_points=total_points).sample(full_box())
    return eng, comp, samples


def test_train_two_classes():
    eng, comp, samples = _inputs(halves(10, 80))
    clf = ClassifierTrainer(eng, n_trees=10).train(comp, FEATURES, samples)
    assert clf.feature_names == FEATURES
    assert clf.classes == (0, 3)
    assert clf.n_samples == 60
    assert clf.model.n_estimators == 10


def test_table_extraction_and_balance():
    eng, comp, samples = _inputs(halves(10, 80))
    trainer = ClassifierTrainer(eng)
    table = trainer.build_table(comp, FEATURES, samples)
    assert table.X.shape == (60, len(FEATURES))
    assert table.dropped == 0
    assert trainer.class_balance(table) == {0: 30, 3: 30}
    ndvi = table.X[:, FEATURES.index("NDVI")]
    assert np.all(ndvi[table.y == 3] > 0.8)


def test_single_class_fails():
    codes = np.full((20, 20), 50, dtype=np.uint8)
    eng, comp, samples = _inputs(codes)
    with pytest.raises(TrainingError, match="single-class"):
        ClassifierTrainer(eng).train(comp, FEATURES, samples)


def test_masked_samples_are_dropped_and_empty_table_fails():
    eng, comp, _ = _inputs(halves())
    outside = SampleSet(
        samples=(LabeledSample(5000.0, 5000.0, 0), LabeledSample(-5.0, 5.0, 3)),
        allocation={0: 1, 3: 1}, reference_counts={}, label_name="class_auto",
    )
    with pytest.raises(TrainingError, match="no usable training rows"):
        ClassifierTrainer(eng).train(comp, FEATURES, outside)


def test_missing_feature_band():
    eng, comp, samples = _inputs(halves())
    with pytest.raises(BandMismatchError):
        ClassifierTrainer(eng).train(comp, FEATURES + ("EVI",), samples)


def test_validate_cardinality():
    trainer = ClassifierTrainer(engine=None)
    bad_rows = TrainingTable(X=np.zeros((3, 2)), y=np.array([0, 1]), feature_names=("a", "b"), label_name="c")
    with pytest.raises(TrainingError):
        trainer.validate(bad_rows, ("a", "b"))
    bad_features = TrainingTable(X=np.zeros((2, 2)), y=np.array([0, 1]), feature_names=("a", "b"), label_name="c")
    with pytest.raises(TrainingError):
        trainer.validate(bad_features, ("b", "a"))
