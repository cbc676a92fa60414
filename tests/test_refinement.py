"""Unit tests for boundary refinement."""

import pytest

from ads_detector.classifiers import DistanceClassifier
from ads_detector.data_models import Interval
from ads_detector.refinement import BoundaryRefiner

from conftest import TOTAL_SEC, SyntheticFrameSource, make_config


@pytest.fixture
def distance_classifier(training_output):
    classifier = DistanceClassifier(make_config())
    classifier.classify(training_output)
    return classifier


class TestRefinedBoundaries:
    def test_start_on_first_absent_when_window_opens_absent(self):
        window = [(90.0, False), (95.0, True), (100.0, False)]
        assert BoundaryRefiner.refined_start(window, 120.0) == 90.0

    def test_start_on_first_transition(self):
        window = [(90.0, True), (95.0, True), (100.0, False), (105.0, True), (110.0, False)]
        assert BoundaryRefiner.refined_start(window, 120.0) == 100.0

    def test_start_kept_without_transition(self):
        window = [(90.0, True), (95.0, True)]
        assert BoundaryRefiner.refined_start(window, 120.0) == 120.0
        assert BoundaryRefiner.refined_start([], 120.0) == 120.0

    def test_end_on_first_present(self):
        window = [(150.0, False), (155.0, False), (160.0, True), (165.0, False)]
        assert BoundaryRefiner.refined_end(window, 180.0) == 160.0

    def test_end_kept_without_logo(self):
        assert BoundaryRefiner.refined_end([(150.0, False)], 180.0) == 180.0
        assert BoundaryRefiner.refined_end([], 180.0) == 180.0


class TestBuildPoints:
    def test_windows_before_each_boundary(self):
        refiner = BoundaryRefiner(make_config(), None, None)
        points = refiner.build_points([Interval(120.0, 180.0)], TOTAL_SEC)
        start = [p.time_sec for p in points if p.is_start_window]
        end = [p.time_sec for p in points if not p.is_start_window]
        assert start == [90.0, 95.0, 100.0, 105.0, 110.0, 115.0, 120.0]
        assert end == [150.0, 155.0, 160.0, 165.0, 170.0, 175.0, 180.0]
        assert [p.position for p in points if p.is_start_window] == list(range(7))

    def test_windows_clamped_to_playlist(self):
        refiner = BoundaryRefiner(make_config(refine_step_sec=10.0), None, None)
        points = refiner.build_points([Interval(10.0, 600.0)], 590.0)
        start = [p.time_sec for p in points if p.is_start_window]
        end = [p.time_sec for p in points if not p.is_start_window]
        assert start == [0.0, 10.0]
        assert end == [570.0, 580.0, 590.0]


class TestRefine:
    def test_coarse_boundaries_tightened(self, distance_classifier):
        source = SyntheticFrameSource(ad_windows=((112.0, 168.0),))
        refiner = BoundaryRefiner(make_config(refine_step_sec=2.0), distance_classifier, source)
        ads = refiner.refine([Interval(115.0, 170.0)], TOTAL_SEC)
        assert ads[0].start_sec == pytest.approx(113.0)
        assert ads[0].end_sec == pytest.approx(168.0)
        assert ads[0].refined

    def test_exact_boundaries_unchanged(self, distance_classifier):
        refiner = BoundaryRefiner(make_config(), distance_classifier, SyntheticFrameSource())
        ads = refiner.refine([Interval(120.0, 180.0)], TOTAL_SEC)
        assert (ads[0].start_sec, ads[0].end_sec) == (120.0, 180.0)
        assert ads[0].refined

    def test_empty(self, distance_classifier):
        source = SyntheticFrameSource()
        refiner = BoundaryRefiner(make_config(), distance_classifier, source)
        assert refiner.refine([], TOTAL_SEC) == []
        assert source.opened == 0

    def test_pool_failure_keeps_coarse(self, distance_classifier):
        source = SyntheticFrameSource(fail_at=lambda t: True)
        refiner = BoundaryRefiner(make_config(), distance_classifier, source)
        ads = refiner.refine([Interval(120.0, 180.0)], TOTAL_SEC)
        assert (ads[0].start_sec, ads[0].end_sec) == (120.0, 180.0)
        assert not ads[0].refined

    def test_unreadable_frame_counts_as_absent(self, distance_classifier):
        source = SyntheticFrameSource(unreadable=[90.0])
        refiner = BoundaryRefiner(make_config(), distance_classifier, source)
        ads = refiner.refine([Interval(120.0, 180.0)], TOTAL_SEC)
        assert ads[0].start_sec == 90.0

    def test_refinement_below_min_duration_rejected(self, distance_classifier):
        # Logo back at 130s: the refined end at 150s leaves a 30s break
        source = SyntheticFrameSource(ad_windows=((120.0, 130.0),))
        refiner = BoundaryRefiner(make_config(min_ad_sec=45.0), distance_classifier, source)
        ads = refiner.refine([Interval(120.0, 180.0)], TOTAL_SEC)
        assert (ads[0].start_sec, ads[0].end_sec) == (120.0, 180.0)
        assert not ads[0].refined
