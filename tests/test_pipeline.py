"""End-to-end tests of the detector on a synthetic ten minute stream."""

import json

import pytest

from ads_detector.exceptions import InsufficientSamplesError, SourceUnavailableError
from ads_detector.logo_detector import LogoDetector
from ads_detector.playlist import parse_playlist
from ads_detector.results import build_result_payload, dumps_payload, write_result_json

from conftest import SyntheticFrameSource, make_config, make_playlist_text


class TestLogoDetector:
    def test_detects_and_refines_break(self, frame_source, playlist_loader):
        detector = LogoDetector(make_config(), frame_source=frame_source, playlist_loader=playlist_loader)
        result = detector.analyze()
        assert result.total_duration_sec == 600.0
        assert result.training.sample_count == 120
        assert len(result.ads) == 1
        ad = result.ads[0]
        assert (ad.start_sec, ad.end_sec) == (120.0, 180.0)
        assert ad.refined
        assert ad.start_program_date_time == "2024-01-01T10:02:00.000+0000"
        assert ad.end_program_date_time == "2024-01-01T10:03:00.000+0000"

    def test_without_refinement(self, frame_source, playlist_loader):
        detector = LogoDetector(make_config(refine=False), frame_source=frame_source,
                                playlist_loader=playlist_loader)
        result = detector.analyze()
        assert [(ad.start_sec, ad.end_sec, ad.refined) for ad in result.ads] == [(120.0, 180.0, False)]

    @pytest.mark.parametrize("overrides", [
        dict(strategy='dbscan', dbscan_eps=0.1),
        dict(strategy='lof', lof_k=20, refine=False),
        dict(strategy='knn', refine=False),
        dict(strategy='template'),
    ])
    def test_other_strategies(self, overrides, frame_source, playlist_loader):
        detector = LogoDetector(make_config(**overrides), frame_source=frame_source,
                                playlist_loader=playlist_loader)
        result = detector.analyze()
        assert [(ad.start_sec, ad.end_sec) for ad in result.ads] == [(120.0, 180.0)]

    @pytest.mark.parametrize("overrides", [
        dict(strategy='distance'),
        dict(strategy='dbscan', dbscan_eps=0.1),
        dict(strategy='lof', lof_k=20, refine=False),
        dict(strategy='knn', refine=False),
        dict(strategy='template'),
    ])
    def test_repeated_runs_identical(self, overrides, playlist_loader):
        runs = []
        for _ in range(2):
            detector = LogoDetector(make_config(threads=3, **overrides), frame_source=SyntheticFrameSource(),
                                    playlist_loader=playlist_loader)
            runs.append([(ad.start_sec, ad.end_sec, ad.refined, ad.start_program_date_time,
                          ad.end_program_date_time) for ad in detector.analyze().ads])
        assert runs[0] == runs[1]
        assert runs[0]

    def test_no_break(self, playlist_loader):
        source = SyntheticFrameSource(ad_windows=())
        detector = LogoDetector(make_config(), frame_source=source, playlist_loader=playlist_loader)
        result = detector.analyze()
        assert result.ads == []
        assert source.opened == 2

    def test_without_program_date_time(self, frame_source):
        def loader(locator, timeout):
            return parse_playlist(make_playlist_text(first_pdt=None))

        detector = LogoDetector(make_config(), frame_source=frame_source, playlist_loader=loader)
        ad = detector.analyze().ads[0]
        assert ad.start_program_date_time is None
        assert ad.end_program_date_time is None

    def test_short_playlist(self, frame_source):
        def loader(locator, timeout):
            return parse_playlist(make_playlist_text(segment_count=2))

        detector = LogoDetector(make_config(), frame_source=frame_source, playlist_loader=loader)
        with pytest.raises(InsufficientSamplesError):
            detector.analyze()

    def test_source_unavailable_propagates(self, frame_source):
        def loader(locator, timeout):
            raise SourceUnavailableError("HTTP 404")

        detector = LogoDetector(make_config(), frame_source=frame_source, playlist_loader=loader)
        with pytest.raises(SourceUnavailableError):
            detector.analyze()


class TestResultPayload:
    def test_shape(self, frame_source, playlist_loader):
        config = make_config(debug=True)
        detector = LogoDetector(config, frame_source=frame_source, playlist_loader=playlist_loader)
        payload = detector.to_payload(detector.analyze())

        assert payload['m3u8'] == "synthetic.m3u8"
        assert payload['totalDurationSec'] == 600.0
        assert payload['process']['elapsedMs'] >= 0
        training = payload['training']
        assert training['sampleEverySec'] == 5.0
        assert training['sampleCount'] == 120
        assert training['roiWidthPct'] == 0.15
        assert training['k'] == 2
        assert training['logoCorner'] == "bottom_right"
        assert 0.05 <= training['logoThresholdBhattacharyya'] <= 0.95
        detection = training['detection']
        assert detection['strategy'] == "bhattacharyya"
        assert detection['enterConsecutive'] == 1
        assert detection['exitConsecutive'] == 1
        assert payload['ads'] == [{
            'startOffsetSec': 120.0,
            'startOffsetHms': "00:02:00",
            'endOffsetSec': 180.0,
            'endOffsetHms': "00:03:00",
            'startProgramDateTime': "2024-01-01T10:02:00.000+0000",
            'endProgramDateTime': "2024-01-01T10:03:00.000+0000",
        }]
        assert payload['debug'] == {'enabled': True, 'logosOutputDir': None, 'logoSampleCount': 108}

    @pytest.mark.parametrize("overrides, strategy, mode", [
        (dict(strategy='dbscan', dbscan_eps=0.1), 'outlier', 'dbscan'),
        (dict(strategy='lof', lof_k=20, refine=False), 'outlier', 'lof'),
        (dict(strategy='knn', refine=False), 'outlier', 'knn'),
    ])
    def test_outlier_strategy_names(self, overrides, strategy, mode, frame_source, playlist_loader):
        detector = LogoDetector(make_config(**overrides), frame_source=frame_source,
                                playlist_loader=playlist_loader)
        detection = detector.to_payload(detector.analyze())['training']['detection']
        assert detection['strategy'] == strategy
        assert detection['outlierMode'] == mode
        assert mode in detection

    def test_template_block(self, frame_source, playlist_loader):
        detector = LogoDetector(make_config(strategy='template'), frame_source=frame_source,
                                playlist_loader=playlist_loader)
        detection = detector.to_payload(detector.analyze())['training']['detection']
        assert detection['strategy'] == 'tokayo'
        assert detection['tokayo']['method'] == 'pixel-median + NCC'

    def test_write_creates_parent_dirs(self, tmp_path, frame_source, playlist_loader):
        detector = LogoDetector(make_config(), frame_source=frame_source, playlist_loader=playlist_loader)
        result = detector.analyze()
        payload = build_result_payload(result, detector.config)
        path = tmp_path / "out" / "nested" / "ads.json"
        text = write_result_json(payload, str(path))
        assert path.read_text(encoding="utf-8") == text == dumps_payload(payload)
        assert json.loads(text)['training']['detection'] == {
            'strategy': 'distance', 'enterConsecutive': 1, 'exitConsecutive': 1}
