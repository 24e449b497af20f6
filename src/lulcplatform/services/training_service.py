# src/lulcplatform/services/training_service.py
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Dict, Sequence, Tuple

import numpy as np

from ..contracts.core import BandName
from ..contracts.products import Composite, SampleSet, TrainedClassifier, TrainingTable
from ..errors import BandMismatchError, TrainingError
from ..ports.engine import RasterEnginePort

LOGGER = logging.getLogger(__name__)


@dataclass
class ClassifierTrainer:
    """
    Per-region random forest:
    - Nearest-pixel extraction of the feature bands at each sample (masked rows dropped)
    - Degenerate tables fail explicitly (empty, single class, shape mismatch)
    - Fixed tree count and seed
    """
    engine: RasterEnginePort
    n_trees: int = 200
    seed: int = 42
    scale_m: float = 10.0

    def build_table(self, composite: Composite, feature_bands: Sequence[BandName], samples: SampleSet) -> TrainingTable:
        bands = tuple(feature_bands)
        missing = [b for b in bands if b not in composite.band_names]
        if missing:
            raise BandMismatchError(f"feature bands {missing} are not in the composite {composite.band_names}")
        image = self.engine.select(composite.image, bands)
        table = self.engine.sample_at(image, samples.samples, samples.label_name, self.scale_m)
        self.validate(table, bands)
        return table

    def validate(self, table: TrainingTable, feature_bands: Tuple[BandName, ...]) -> None:
        X, y = table.X, table.y
        if X.ndim != 2 or y.ndim != 1:
            raise TrainingError(f"bad table shapes X{X.shape} y{y.shape}")
        if X.shape[0] != y.shape[0]:
            raise TrainingError(f"{X.shape[0]} feature rows vs {y.shape[0]} labels")
        if X.shape[1] != len(feature_bands) or tuple(table.feature_names) != tuple(feature_bands):
            raise TrainingError(
                f"table features {table.feature_names} do not match requested {feature_bands}"
            )
        if X.shape[0] == 0:
            raise TrainingError(f"no usable training rows ({table.dropped} sample(s) fell on masked pixels)")
        classes = np.unique(y)
        if classes.size < 2:
            raise TrainingError(f"single-class training set (class {int(classes[0])}, {y.size} rows)")

    @staticmethod
    def class_balance(table: TrainingTable) -> Dict[int, int]:
        unique, counts = np.unique(table.y, return_counts=True)
        return {int(k): int(v) for k, v in zip(unique.tolist(), counts.tolist())}

    def train(self, composite: Composite, feature_bands: Sequence[BandName], samples: SampleSet) -> TrainedClassifier:
        table = self.build_table(composite, feature_bands, samples)
        LOGGER.debug(
            "training %d trees on %d rows (%d dropped), balance=%s",
            self.n_trees, table.n_rows, table.dropped, self.class_balance(table),
        )
        model = self.engine.train_random_forest(table, self.n_trees, self.seed)
        return TrainedClassifier(
            model=model,
            feature_names=tuple(table.feature_names),
            classes=table.classes(),
            n_samples=table.n_rows,
        )


__all__ = ["ClassifierTrainer"]
