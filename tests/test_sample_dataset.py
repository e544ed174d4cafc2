"""
Unit tests for the sample and dataset model.
"""

import cv2
import numpy as np
import pytest

from services.dataset.sample import Dot, Sample, SampleDataset


def make_sample(colors, labels=None, **kwargs):
    labels = labels or [''] * len(colors)
    return Sample([Dot(color=c, label=l) for c, l in zip(colors, labels)], **kwargs)


def make_imaged_sample():
    """Sample with geometry and a balanced image, as produced from a photo."""
    image = np.full((100, 200, 3), 255, dtype=np.uint8)
    dots = []
    for i, (cx, color) in enumerate([(50, (40, 40, 200)), (150, (200, 40, 40))]):
        cv2.circle(image, (cx, 50), 20, color, -1)
        contour = cv2.ellipse2Poly((cx, 50), (8, 8), 0, 0, 360, 10).reshape(-1, 1, 2).astype(np.int32)
        dots.append(Dot(color=(color[2], color[1], color[0]), contour=contour,
                        centroid=(float(cx), 50.0), row=0, col=i))
    return Sample(dots, image=image, balanced=image.copy())


class TestSample:
    """Test cases for Sample."""

    def test_views_follow_dots(self):
        sample = make_sample([(255, 0, 0), (0, 0, 255)], ['a', 'b'])

        assert sample.rgb == [(255, 0, 0), (0, 0, 255)]
        assert sample.names == ['a', 'b']
        assert sample.greyscale[0] == 0.299 * 255
        assert sample.greyscale[1] == 0.114 * 255
        assert len(sample) == sample.dot_count == 2

    def test_greyscale_weights(self):
        dot = Dot(color=(100.0, 150.0, 200.0))
        assert dot.greyscale == 0.299 * 100 + 0.587 * 150 + 0.114 * 200

    def test_validate(self):
        assert make_sample([(0, 0, 0), (1, 1, 1)], ['a', 'b']).validate()
        assert not make_sample([(0, 0, 0), (1, 1, 1)], ['a', '']).validate()
        assert not make_sample([(0, 0, 0), (1, 1, 1)], ['a', '   ']).validate()
        assert not make_sample([(0, 0, 0), (1, 1, 1)], ['a', 'a']).validate()

    def test_relabel(self):
        sample = make_sample([(0, 0, 0), (1, 1, 1)], ['a', 'b'])

        assert sample.relabel(0, 'c')
        assert sample.names == ['c', 'b']

    def test_relabel_same_label_same_index(self):
        sample = make_sample([(0, 0, 0), (1, 1, 1)], ['a', 'b'])
        assert sample.relabel(1, 'b')

    def test_relabel_duplicate_rejected(self):
        sample = make_sample([(0, 0, 0), (1, 1, 1)], ['a', 'b'])

        assert not sample.relabel(0, 'b')
        assert sample.names == ['a', 'b']

    def test_relabel_can_clear_label(self):
        sample = make_sample([(0, 0, 0), (1, 1, 1)], ['', ''])

        assert sample.relabel(0, 'x')
        assert sample.relabel(0, '')
        assert sample.names == ['', '']
        assert not sample.validate()

    def test_relabel_out_of_range(self):
        sample = make_sample([(0, 0, 0)], ['a'])
        assert not sample.relabel(1, 'x')
        assert not sample.relabel(-1, 'x')
        assert sample.names == ['a']

    def test_reorder_moves_color_and_label_together(self):
        sample = make_sample([(10, 0, 0), (0, 20, 0), (0, 0, 30)], ['r', 'g', 'b'])

        assert sample.reorder(0, 2)

        assert sample.rgb == [(0, 0, 30), (0, 20, 0), (10, 0, 0)]
        assert sample.names == ['b', 'g', 'r']
        assert sample.greyscale == [0.114 * 30, 0.587 * 20, 0.299 * 10]

    def test_reorder_out_of_range(self):
        sample = make_sample([(10, 0, 0), (0, 20, 0)], ['r', 'g'])

        assert not sample.reorder(0, 2)
        assert not sample.reorder(-1, 0)
        assert sample.names == ['r', 'g']

    def test_ordering_overlay_regenerated_on_reorder(self):
        sample = make_imaged_sample()
        before = sample.ordering.copy()

        assert sample.reorder(0, 1)

        assert sample.ordering is not None
        assert not np.array_equal(before, sample.ordering)

    def test_no_overlay_without_balanced_image(self):
        sample = make_sample([(0, 0, 0), (1, 1, 1)])
        assert sample.reorder(0, 1)
        assert sample.ordering is None


class TestSampleDataset:
    """Test cases for SampleDataset."""

    def setup_method(self):
        """Set up test fixtures."""
        self.dataset = SampleDataset([
            make_sample([(10, 20, 30), (40, 50, 60)]),
            make_sample([(70, 80, 90), (100, 110, 120)]),
        ])

    def test_name_well_labels_every_sample(self):
        assert self.dataset.name_well(1, 'glucose')
        assert [s.names for s in self.dataset] == [['', 'glucose'], ['', 'glucose']]

    def test_name_well_out_of_range_changes_nothing(self):
        self.dataset.add(make_sample([(1, 1, 1)]))

        assert not self.dataset.name_well(1, 'glucose')
        assert all(name == '' for s in self.dataset for name in s.names)

    def test_all_samples_valid(self):
        assert not self.dataset.all_samples_valid()
        self.dataset.name_well(0, 'a')
        self.dataset.name_well(1, 'b')
        assert self.dataset.all_samples_valid()

    def test_reorder_sample(self):
        assert self.dataset.reorder_sample(1, 0, 1)
        assert self.dataset[1].rgb == [(100, 110, 120), (70, 80, 90)]
        assert self.dataset[0].rgb == [(10, 20, 30), (40, 50, 60)]

    def test_reorder_sample_bad_id(self):
        assert not self.dataset.reorder_sample(5, 0, 1)

    def test_consistent_dot_count(self):
        assert self.dataset.has_consistent_dot_count()
        self.dataset.add(make_sample([(1, 1, 1)]))
        assert not self.dataset.has_consistent_dot_count()
        assert SampleDataset().has_consistent_dot_count()

    def test_to_csv_layout(self):
        self.dataset.name_well(0, 'a')
        self.dataset.name_well(1, 'b')

        assert self.dataset.to_csv() == '10,20,30,40,50,60,a,b\n70,80,90,100,110,120,a,b\n'

    def test_csv_round_trip(self):
        dataset = SampleDataset([
            make_sample([(10.5, 20.25, 30.0), (40.0, 50.0, 60.0)], ['alpha', 'beta']),
            make_sample([(0.1, 255.0, 3.0), (7.0, 8.0, 9.0)], ['gamma', 'delta']),
        ])

        restored = SampleDataset.from_csv(dataset.to_csv(), dot_count=2)

        assert len(restored) == 2
        for original, copy in zip(dataset, restored):
            assert copy.rgb == original.rgb
            assert copy.names == original.names
            assert copy.image is None
            assert copy.dots[0].contour is None

    def test_labels_with_commas_round_trip(self):
        dataset = SampleDataset([make_sample([(1, 2, 3)], ['a, b'])])
        restored = SampleDataset.from_csv(dataset.to_csv(), dot_count=1)
        assert restored[0].names == ['a, b']

    def test_labels_with_surrounding_spaces_round_trip(self):
        dataset = SampleDataset([make_sample([(1, 2, 3), (4, 5, 6)], ['A', ' A'])])
        assert dataset.all_samples_valid()

        restored = SampleDataset.from_csv(dataset.to_csv(), dot_count=2)

        assert restored[0].names == ['A', ' A']
        assert restored.all_samples_valid()

    def test_malformed_rows_skipped(self):
        text = '\n'.join([
            '1,2,3,4,5,6,a,b',
            '1,2,3,a',  # Wrong token count
            '1,2,x,4,5,6,a,b',  # Non-numeric color
            '',
            '7,8,9,10,11,12,c,d',
        ])

        dataset = SampleDataset.from_csv(text, dot_count=2)

        assert len(dataset) == 2
        assert dataset[0].names == ['a', 'b']
        assert dataset[1].rgb == [(7.0, 8.0, 9.0), (10.0, 11.0, 12.0)]

    def test_reference_flag(self):
        dataset = SampleDataset.from_csv('1,2,3,a\n', dot_count=1, reference=True)
        assert dataset[0].is_reference

    def test_invalid_dot_count(self):
        with pytest.raises(ValueError):
            SampleDataset.from_csv('1,2,3,a\n', dot_count=0)
