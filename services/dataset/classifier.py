"""
Nearest-neighbor dot classification for Micropad CV Service.

Each dot of a target sample takes the label of the closest same-position dot
among the reference samples. Distances are computed on raw channel values;
no per-channel normalization is applied, so RGB and Lab distances weight
their channels differently.
"""

import logging
import numpy as np
from typing import Dict, List, Optional, Sequence, Union
from colormath.color_diff_matrix import delta_e_cie2000

from services.dataset.sample import Dot, Sample, SampleDataset
from services.interfaces import ColorSpace, DistanceKind
from utils.color_conversion import as_lab_vector

logger = logging.getLogger(__name__)


def parse_distance(value: Union[str, DistanceKind]) -> DistanceKind:
    """Resolve a distance name case-insensitively."""
    if isinstance(value, DistanceKind):
        return value
    for kind in DistanceKind:
        if kind.value.lower() == str(value).strip().lower():
            return kind
    valid = ', '.join(k.value for k in DistanceKind)
    raise ValueError(f'Unknown distance {value!r}, expected one of: {valid}')


def parse_color_space(value: Union[str, ColorSpace]) -> ColorSpace:
    """Resolve a color space name case-insensitively ('Grayscale' is accepted)."""
    if isinstance(value, ColorSpace):
        return value
    name = str(value).strip().lower()
    if name == 'grayscale':
        name = 'greyscale'
    for space in ColorSpace:
        if space.value.lower() == name:
            return space
    valid = ', '.join(s.value for s in ColorSpace)
    raise ValueError(f'Unknown color space {value!r}, expected one of: {valid}')


def dot_vector(dot: Dot, color_space: ColorSpace) -> np.ndarray:
    """Representation of a dot color in the requested space."""
    if color_space == ColorSpace.GREYSCALE:
        return np.array([dot.greyscale], dtype=np.float64)
    if color_space == ColorSpace.LAB:
        return as_lab_vector(dot.color)
    return np.array(dot.color, dtype=np.float64)


def distances(
    target: np.ndarray,
    candidates: np.ndarray,
    distance: DistanceKind
) -> np.ndarray:
    """
    Distance from one target vector to each row of candidates.

    Euclidean is the sum of squared differences (its ordering matches true
    Euclidean distance), Manhattan the sum of absolute differences. CIEDE2000
    expects Lab vectors.
    """
    if distance == DistanceKind.CIEDE2000:
        return np.asarray(delta_e_cie2000(target, candidates), dtype=np.float64)
    diff = candidates - target
    if distance == DistanceKind.MANHATTAN:
        return np.sum(np.abs(diff), axis=1)
    return np.sum(diff * diff, axis=1)


class ClassificationService:
    """Service for labeling target samples from a labeled reference dataset."""

    def __init__(self):
        """Initialize classification service."""
        self.logger = logging.getLogger(__name__)

    def classify(
        self,
        reference: SampleDataset,
        target: SampleDataset,
        distance: Union[str, DistanceKind] = DistanceKind.EUCLIDEAN,
        color_space: Union[str, ColorSpace] = ColorSpace.RGB
    ) -> SampleDataset:
        """
        Assign every target dot the label of its nearest reference dot.

        Target dot i is only compared with dot i of each reference sample.
        The first reference sample reaching the minimum distance wins.
        Reference samples without a dot i are skipped; when none has one the
        target label is left unchanged.

        Args:
            reference: Labeled reference samples
            target: Samples to label (modified in place)
            distance: Distance kind
            color_space: Color representation compared. CIEDE2000 always
                compares Lab colors.

        Returns:
            The target dataset
        """
        self.match(reference, target, distance, color_space)
        return target

    def match(
        self,
        reference: SampleDataset,
        target: SampleDataset,
        distance: Union[str, DistanceKind] = DistanceKind.EUCLIDEAN,
        color_space: Union[str, ColorSpace] = ColorSpace.RGB
    ) -> List[List[Optional[Dict]]]:
        """
        Label target dots and report each match.

        Returns:
            One list per target sample, one entry per dot: a dict with
            'label', 'reference_index' and 'distance', or None when no
            reference sample had that dot
        """
        distance = parse_distance(distance)
        color_space = parse_color_space(color_space)
        if distance == DistanceKind.CIEDE2000 and color_space != ColorSpace.LAB:
            self.logger.debug(f'CIEDE2000 compares Lab colors, ignoring color space {color_space.value}')
            color_space = ColorSpace.LAB

        reference_samples = list(reference)
        self.logger.info(
            f'Classifying {len(target)} samples against {len(reference_samples)} references '
            f'({distance.value}, {color_space.value})'
        )

        all_matches = []
        for sample in target:
            all_matches.append(self._classify_sample(sample, reference_samples, distance, color_space))
        return all_matches

    def _classify_sample(
        self,
        sample: Sample,
        reference_samples: Sequence[Sample],
        distance: DistanceKind,
        color_space: ColorSpace
    ) -> List[Optional[Dict]]:
        matches = []
        for i, dot in enumerate(sample.dots):
            candidates = [
                (ref_index, ref.dots[i])
                for ref_index, ref in enumerate(reference_samples)
                if i < ref.dot_count
            ]
            if not candidates:
                self.logger.debug(f'No reference sample has dot {i}, label left unchanged')
                matches.append(None)
                continue

            matrix = np.vstack([dot_vector(ref_dot, color_space) for _, ref_dot in candidates])
            scores = distances(dot_vector(dot, color_space), matrix, distance)
            best = int(np.argmin(scores))  # First minimum wins
            ref_index, ref_dot = candidates[best]

            dot.label = ref_dot.label
            matches.append({
                'label': ref_dot.label,
                'reference_index': ref_index,
                'distance': float(scores[best])
            })
        return matches


def classify(
    reference: SampleDataset,
    target: SampleDataset,
    distance: Union[str, DistanceKind] = DistanceKind.EUCLIDEAN,
    color_space: Union[str, ColorSpace] = ColorSpace.RGB
) -> SampleDataset:
    """Module-level shortcut for ClassificationService().classify."""
    return ClassificationService().classify(reference, target, distance, color_space)
