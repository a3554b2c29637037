"""
Tests for the correspondence rejection framework and its strategies.
"""

from pathlib import Path
import logging
import sys

import numpy as np
import pytest

# Ensure src is importable
sys.path.append(str(Path(__file__).parent.parent / "src"))

from point_cloud_registration.correspondence import (
    Correspondence,
    correspondences_from_arrays,
    correspondences_to_arrays,
)
from point_cloud_registration.alignment.correspondence_rejection import (
    CorrespondenceRejector,
    DistanceRejector,
    MedianDistanceRejector,
    OneToOneRejector,
    RejectorChain,
    SurfaceNormalRejector,
    TrimmedRejector,
    build_rejectors,
    chain_rejections,
    compare_correspondences_distance,
    sorted_set_difference,
)
from point_cloud_registration.utils.config import RejectionConfig


def _corrs(*triples):
    return [Correspondence(q, m, d) for q, m, d in triples]


class TestBaseContract:
    def test_abstract_base_cannot_be_instantiated(self):
        with pytest.raises(TypeError):
            CorrespondenceRejector()

    def test_no_input_is_a_silent_noop(self, caplog):
        rejector = DistanceRejector(1.0)
        with caplog.at_level(logging.DEBUG):
            assert rejector.get_correspondences() == []
        assert caplog.text == ""

    def test_empty_input_returns_empty(self):
        rejector = DistanceRejector(1.0)
        rejector.set_input_correspondences([])
        assert rejector.get_correspondences() == []

    def test_rejected_indices_without_input_warns(self, caplog):
        rejector = OneToOneRejector()
        with caplog.at_level(logging.WARNING):
            result = rejector.get_rejected_query_indices(_corrs((0, 0, 0.1)))
        assert result == []
        assert "Input correspondences not set" in caplog.text

    def test_rejected_indices_with_empty_input_is_silent(self, caplog):
        rejector = OneToOneRejector()
        rejector.set_input_correspondences([])
        with caplog.at_level(logging.DEBUG):
            result = rejector.get_rejected_query_indices([])
        assert result == []
        assert caplog.text == ""

    def test_rejected_query_indices(self):
        original = _corrs((0, 3, 0.1), (1, 4, 2.0), (2, 5, 0.2), (3, 6, 5.0), (4, 7, 0.3))
        rejector = DistanceRejector(1.0)
        rejector.set_input_correspondences(original)
        remaining = rejector.get_correspondences()

        assert [c.index_query for c in remaining] == [0, 2, 4]
        assert rejector.get_rejected_query_indices(remaining) == [1, 3]

    def test_remaining_is_independent_of_registered_input(self):
        rejector = DistanceRejector(1.0)
        rejector.set_input_correspondences(_corrs((0, 0, 0.5)))
        other = _corrs((5, 1, 3.0), (6, 2, 0.9))

        assert rejector.get_remaining_correspondences(other) == _corrs((6, 2, 0.9))
        assert rejector.get_correspondences() == _corrs((0, 0, 0.5))

    def test_custom_strategy_plugs_in(self):
        class EvenQueryRejector(CorrespondenceRejector):
            def get_remaining_correspondences(self, original):
                return [c for c in original if c.index_query % 2 == 0]

        rejector = EvenQueryRejector()
        rejector.set_input_correspondences(_corrs((0, 0, 1.0), (1, 1, 1.0), (2, 2, 1.0)))
        assert [c.index_query for c in rejector.get_correspondences()] == [0, 2]

    def test_compare_by_distance(self):
        a = Correspondence(0, 0, 0.1)
        b = Correspondence(1, 1, 0.2)
        assert compare_correspondences_distance(a, b)
        assert not compare_correspondences_distance(b, a)
        assert not compare_correspondences_distance(a, a)


def test_sorted_set_difference_multiset_semantics():
    assert sorted_set_difference([1, 2, 2, 3, 5], [2, 5]) == [1, 2, 3]
    assert sorted_set_difference([1, 2, 3], []) == [1, 2, 3]
    assert sorted_set_difference([], [1, 2]) == []
    assert sorted_set_difference([1, 2, 3], [0, 1, 2, 3, 4]) == []


class TestStrategies:
    def test_distance_threshold_is_inclusive(self):
        rejector = DistanceRejector(0.5)
        result = rejector.get_remaining_correspondences(_corrs((0, 0, 0.5), (1, 1, 0.51), (2, 2, 0.0)))
        assert [c.index_query for c in result] == [0, 2]

    def test_negative_distance_rejected_at_construction(self):
        with pytest.raises(ValueError):
            DistanceRejector(-1.0)

    def test_median_distance(self):
        original = _corrs((0, 0, 1.0), (1, 1, 1.0), (2, 2, 1.2), (3, 3, 0.8), (4, 4, 10.0))
        rejector = MedianDistanceRejector(factor=3.0)
        result = rejector.get_remaining_correspondences(original)
        assert [c.index_query for c in result] == [0, 1, 2, 3]
        assert rejector.last_median == pytest.approx(1.0)

    def test_trimmed_keeps_best_fraction_in_input_order(self):
        original = _corrs((0, 0, 0.9), (1, 1, 0.1), (2, 2, 0.5), (3, 3, 0.3), (4, 4, 0.7))
        result = TrimmedRejector(overlap_ratio=0.5).get_remaining_correspondences(original)
        # ceil(0.5 * 5) = 3 best: 0.1, 0.3, 0.5
        assert [c.index_query for c in result] == [1, 2, 3]

    def test_trimmed_respects_minimum(self):
        original = _corrs((0, 0, 0.9), (1, 1, 0.1), (2, 2, 0.5), (3, 3, 0.3))
        result = TrimmedRejector(overlap_ratio=0.25, min_correspondences=3).get_remaining_correspondences(original)
        assert len(result) == 3

    def test_one_to_one_keeps_closest_per_match(self):
        original = _corrs((0, 5, 0.3), (1, 5, 0.1), (2, 6, 0.2), (3, 5, 0.1))
        result = OneToOneRejector().get_remaining_correspondences(original)
        # Tie at 0.1 goes to the first occurrence
        assert result == _corrs((1, 5, 0.1), (2, 6, 0.2))

    def test_surface_normal_angle(self):
        source_normals = np.array([[0.0, 0.0, 1.0], [0.0, 0.0, 1.0], [0.0, 0.0, 1.0], [np.nan, np.nan, np.nan]])
        target_normals = np.array(
            [
                [0.0, 0.0, 1.0],
                [1.0, 0.0, 0.0],
                [0.0, np.sin(np.deg2rad(20.0)), -np.cos(np.deg2rad(20.0))],
                [0.0, 0.0, 1.0],
            ]
        )
        rejector = SurfaceNormalRejector(source_normals, target_normals, max_angle_deg=30.0)
        original = _corrs((0, 0, 0.1), (1, 1, 0.1), (2, 2, 0.1), (3, 3, 0.1))
        result = rejector.get_remaining_correspondences(original)
        # Pair 2 is flipped but within 20 degrees; pair 1 is perpendicular; pair 3 has no normal
        assert [c.index_query for c in result] == [0, 2]


class TestComposition:
    def test_chain_on_empty_set(self):
        chain = [DistanceRejector(1.0), OneToOneRejector(), TrimmedRejector(0.5)]
        assert chain_rejections([], chain) == []

    def test_chain_feeds_output_forward(self):
        original = _corrs((0, 5, 0.3), (1, 5, 0.1), (2, 6, 2.0), (3, 7, 0.4))
        distance = DistanceRejector(1.0)
        one_to_one = OneToOneRejector()

        result = chain_rejections(original, [distance, one_to_one])

        assert result == _corrs((1, 5, 0.1), (3, 7, 0.4))
        assert distance.get_rejected_query_indices(distance.get_correspondences()) == [2]
        assert one_to_one.get_rejected_query_indices(result) == [0]

    def test_chain_total_rejection_is_empty(self):
        original = _corrs((0, 0, 5.0), (1, 1, 6.0))
        assert chain_rejections(original, [DistanceRejector(1.0), OneToOneRejector()]) == []

    def test_rejector_chain_is_a_rejector(self):
        chain = RejectorChain([DistanceRejector(1.0), TrimmedRejector(0.5)])
        chain.set_input_correspondences(_corrs((0, 0, 0.2), (1, 1, 0.1), (2, 2, 3.0), (3, 3, 0.5)))
        result = chain.get_correspondences()

        assert len(chain) == 2
        assert [c.index_query for c in result] == [0, 1]
        assert chain.get_rejected_query_indices(result) == [2, 3]

    def test_build_rejectors_from_config(self, caplog):
        cfg = RejectionConfig(max_distance=1.0, one_to_one=True, max_normal_angle_deg=45.0)
        with caplog.at_level(logging.WARNING):
            chain = build_rejectors(cfg)
        assert [type(r) for r in chain.rejectors] == [DistanceRejector, OneToOneRejector]
        assert "no normals" in caplog.text

        normals = np.tile([0.0, 0.0, 1.0], (3, 1))
        chain = build_rejectors(cfg, normals, normals)
        assert [type(r) for r in chain.rejectors] == [DistanceRejector, SurfaceNormalRejector, OneToOneRejector]


def test_array_conversions():
    corrs = correspondences_from_arrays([0, 1, 2], [5, 4, 3], [0.5, 0.25, 0.0])
    assert corrs[1] == Correspondence(1, 4, 0.25)

    q, m, d = correspondences_to_arrays(corrs)
    assert q.tolist() == [0, 1, 2]
    assert m.tolist() == [5, 4, 3]
    assert d.tolist() == [0.5, 0.25, 0.0]

    with pytest.raises(ValueError):
        correspondences_from_arrays([0, 1], [0], [0.1, 0.2])
