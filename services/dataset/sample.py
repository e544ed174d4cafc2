"""
Sample and dataset model for Micropad CV Service.

A Sample is one analyzed micropad: an ordered list of Dots, each carrying its
color, label and (when it came from a photo) its contour and grid position.
The rgb, greyscale and names views are derived from the Dots so they can
never drift out of step.
"""

import csv
import io
import logging
import numpy as np
from dataclasses import dataclass
from typing import Iterable, List, Optional

from utils.color_conversion import RGBTriple, rgb_to_greyscale
from utils.contour_geometry import Centroid
from utils.detection_visualization import draw_ordering

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class Dot:
    """One dye well: color plus the geometry it was measured from."""
    color: RGBTriple
    label: str = ''
    contour: Optional[np.ndarray] = None
    centroid: Optional[Centroid] = None
    row: Optional[int] = None
    col: Optional[int] = None

    @property
    def greyscale(self) -> float:
        return rgb_to_greyscale(self.color)


class Sample:
    """
    One analyzed micropad.

    Attributes:
        dots: Dots in canonical row-major order
        image: Original photo (BGR), None for imported samples
        balanced: Color-corrected photo (BGR), None for imported samples
        ordering: Balanced photo annotated with dot order, or None
        is_reference: Whether this sample belongs to a labeled reference set
        reference_name: Optional name of the reference sample
    """

    def __init__(
        self,
        dots: Iterable[Dot],
        image: Optional[np.ndarray] = None,
        balanced: Optional[np.ndarray] = None,
        is_reference: bool = False,
        reference_name: str = ''
    ):
        self.dots: List[Dot] = list(dots)
        self.image = image
        self.balanced = balanced
        self.is_reference = is_reference
        self.reference_name = reference_name
        self.ordering: Optional[np.ndarray] = None
        self.regenerate_ordering()

    def __len__(self) -> int:
        return len(self.dots)

    def __repr__(self) -> str:
        return f'Sample(dots={len(self.dots)}, names={self.names!r}, is_reference={self.is_reference})'

    @property
    def dot_count(self) -> int:
        return len(self.dots)

    @property
    def rgb(self) -> List[RGBTriple]:
        return [dot.color for dot in self.dots]

    @property
    def greyscale(self) -> List[float]:
        return [dot.greyscale for dot in self.dots]

    @property
    def names(self) -> List[str]:
        return [dot.label for dot in self.dots]

    def regenerate_ordering(self) -> Optional[np.ndarray]:
        """Redraw the ordering overlay from the balanced image, if there is one."""
        if self.balanced is None:
            self.ordering = None
        else:
            self.ordering = draw_ordering(self.balanced, self.dots)
        return self.ordering

    def reorder(self, from_index: int, to_index: int) -> bool:
        """
        Swap two dots, moving their color, label and geometry together.

        Returns:
            False (and no change) if either index is out of range
        """
        count = len(self.dots)
        if not (0 <= from_index < count and 0 <= to_index < count):
            logger.debug(f'Reorder {from_index} -> {to_index} out of range for {count} dots')
            return False

        self.dots[from_index], self.dots[to_index] = self.dots[to_index], self.dots[from_index]
        self.regenerate_ordering()
        return True

    def relabel(self, index: int, label: str) -> bool:
        """
        Set the label of one dot.

        Returns:
            False (and no change) if index is out of range or another dot
            already carries the label. Blank labels clear a dot and are never
            treated as duplicates.
        """
        if not 0 <= index < len(self.dots):
            return False
        if label.strip() and any(i != index and dot.label == label for i, dot in enumerate(self.dots)):
            logger.debug(f'Label {label!r} already used, not assigning to dot {index}')
            return False

        self.dots[index].label = label
        return True

    def validate(self) -> bool:
        """True when every label is non-blank and no two labels are equal."""
        names = self.names
        if any(not name.strip() for name in names):
            return False
        return len(set(names)) == len(names)


class SampleDataset:
    """Ordered collection of samples with bulk labeling and CSV support."""

    def __init__(self, samples: Optional[Iterable[Sample]] = None):
        self.samples: List[Sample] = list(samples or [])

    def __len__(self) -> int:
        return len(self.samples)

    def __iter__(self):
        return iter(self.samples)

    def __getitem__(self, index: int) -> Sample:
        return self.samples[index]

    def add(self, sample: Sample) -> None:
        self.samples.append(sample)

    def name_well(self, index: int, label: str) -> bool:
        """
        Give dot `index` the same label on every sample.

        Returns:
            False (and no change) when index is out of range for any sample
        """
        if any(not 0 <= index < sample.dot_count for sample in self.samples):
            logger.debug(f'Well {index} out of range for at least one sample')
            return False

        for sample in self.samples:
            sample.dots[index].label = label
        return True

    def reorder_sample(self, sample_id: int, from_index: int, to_index: int) -> bool:
        """Swap two dots of one sample; False if any index is out of range."""
        if not 0 <= sample_id < len(self.samples):
            return False
        return self.samples[sample_id].reorder(from_index, to_index)

    def all_samples_valid(self) -> bool:
        return all(sample.validate() for sample in self.samples)

    def has_consistent_dot_count(self) -> bool:
        """True when every sample has the same number of dots (or there are none)."""
        return len({sample.dot_count for sample in self.samples}) <= 1

    def to_csv(self) -> str:
        """
        Serialize samples, one row per sample.

        Each row is R,G,B for every dot followed by every label. No header.
        """
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator='\n')
        for sample in self.samples:
            row = []
            for r, g, b in sample.rgb:
                row.extend([_format_channel(r), _format_channel(g), _format_channel(b)])
            row.extend(sample.names)
            writer.writerow(row)
        return buffer.getvalue()

    @classmethod
    def from_csv(cls, text: str, dot_count: int, reference: bool = False) -> 'SampleDataset':
        """
        Parse samples written by to_csv.

        Rows whose token count is not 4 * dot_count, or whose color tokens
        are not numbers, are skipped.

        Args:
            text: CSV text
            dot_count: Number of dots per sample
            reference: Mark imported samples as reference samples

        Returns:
            SampleDataset of imported samples (colors and labels only)

        Raises:
            ValueError: If dot_count is not positive
        """
        if dot_count <= 0:
            raise ValueError(f'dot_count must be positive, got {dot_count}')

        expected_tokens = 4 * dot_count
        samples = []

        for line_number, row in enumerate(csv.reader(io.StringIO(text)), start=1):
            if not row or all(not token.strip() for token in row):
                continue
            if len(row) != expected_tokens:
                logger.debug(
                    f'Skipping CSV line {line_number}: {len(row)} tokens, expected {expected_tokens}'
                )
                continue

            try:
                values = [float(token) for token in row[:3 * dot_count]]
            except ValueError:
                logger.debug(f'Skipping CSV line {line_number}: non-numeric color value')
                continue

            labels = row[3 * dot_count:]
            dots = [
                Dot(color=(values[3 * i], values[3 * i + 1], values[3 * i + 2]), label=labels[i])
                for i in range(dot_count)
            ]
            samples.append(Sample(dots, is_reference=reference))

        logger.info(f'Imported {len(samples)} samples from CSV')
        return cls(samples)


def _format_channel(value: float) -> str:
    """Shortest text that reads back as the same float."""
    value = float(value)
    if value.is_integer():
        return str(int(value))
    return repr(value)
