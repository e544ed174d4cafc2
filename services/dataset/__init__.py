"""
Sample model, dataset operations and classification.
"""

from services.dataset.sample import Dot, Sample, SampleDataset
from services.dataset.classifier import ClassificationService, classify

__all__ = [
    'Dot',
    'Sample',
    'SampleDataset',
    'ClassificationService',
    'classify'
]
