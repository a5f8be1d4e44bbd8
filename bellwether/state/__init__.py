"""Entity state table and status classification."""

from bellwether.state.classifiers import BooleanClassifier, Classifier, ThresholdClassifier
from bellwether.state.store import StateStore

__all__ = [
    "BooleanClassifier",
    "Classifier",
    "StateStore",
    "ThresholdClassifier",
]
