"""Unit tests for the per-channel ad store."""

import pytest

from ads_detector.ad_store import AdStore, channel_key

CHANNEL = "https://cdn.example.com/live/channel1/index.m3u8"

# 2024-01-01T10:00:00Z
BASE = 1704103200


def _payload(*ads):
    return {'ads': [{'startProgramDateTime': start, 'endProgramDateTime': end} for start, end in ads]}


@pytest.fixture
def store():
    store = AdStore()
    store.register_channel(CHANNEL)
    return store


class TestChannelKey:
    def test_strips_query(self):
        assert channel_key(CHANNEL + "?startTime=1&endTime=2") == CHANNEL


class TestAppend:
    def test_ads_stored_in_epoch_seconds(self, store):
        added = store.append_detection_result(CHANNEL, BASE, BASE + 600, _payload(
            ("2024-01-01T10:02:00.900+0000", "2024-01-01T10:03:00.000+0000")))
        assert added == 1
        ad = store.find_ads(CHANNEL, BASE, BASE + 600)[0]
        assert (ad.start_epoch, ad.end_epoch) == (BASE + 120, BASE + 180)
        assert ad.duration == 60

    def test_duplicates_skipped(self, store):
        payload = _payload(("2024-01-01T10:02:00.000+0000", "2024-01-01T10:03:00.000+0000"))
        store.append_detection_result(CHANNEL, BASE, BASE + 600, payload)
        assert store.append_detection_result(CHANNEL, BASE, BASE + 600, payload) == 0
        assert len(store.find_ads(CHANNEL, BASE, BASE + 600)) == 1

    def test_sorted_by_start(self, store):
        store.append_detection_result(CHANNEL, BASE + 600, BASE + 1200, _payload(
            ("2024-01-01T10:15:00Z", "2024-01-01T10:16:00Z")))
        store.append_detection_result(CHANNEL, BASE, BASE + 600, _payload(
            ("2024-01-01T10:02:00Z", "2024-01-01T10:03:00Z")))
        starts = [ad.start_epoch for ad in store.find_ads(CHANNEL, BASE, BASE + 1200)]
        assert starts == [BASE + 120, BASE + 900]

    def test_ads_without_program_date_time_skipped(self, store):
        added = store.append_detection_result(CHANNEL, BASE, BASE + 600, _payload(
            (None, None), ("2024-01-01T10:02:00Z", "garbage")))
        assert added == 0
        assert store.processed_latest(CHANNEL) == BASE + 600

    def test_unregistered_channel_ignored(self, store):
        assert store.append_detection_result("https://other/index.m3u8", BASE, BASE + 600, _payload(
            ("2024-01-01T10:02:00Z", "2024-01-01T10:03:00Z"))) == 0
        assert store.processed_latest("https://other/index.m3u8") is None


class TestQueries:
    @pytest.fixture(autouse=True)
    def _fill(self, store):
        store.append_detection_result(CHANNEL, BASE, BASE + 1200, _payload(
            ("2024-01-01T10:02:00Z", "2024-01-01T10:03:00Z"),
            ("2024-01-01T10:15:00Z", "2024-01-01T10:16:00Z")))

    def test_overlap(self, store):
        assert len(store.find_ads(CHANNEL, BASE + 170, BASE + 200)) == 1
        assert store.find_ads(CHANNEL, BASE + 180, BASE + 900) == []
        assert store.find_ads("https://unknown", BASE, BASE + 1200) == []

    def test_query_by_url_relative_offsets(self, store):
        url = f"{CHANNEL}?startTime={BASE + 150}&endTime={BASE + 930}"
        result = store.query_by_m3u8_url(url)
        assert result['totalDurationSec'] == 780
        assert [(ad['startOffsetSec'], ad['endOffsetSec']) for ad in result['ads']] == [(0, 30), (750, 780)]

    @pytest.mark.parametrize("query", ["", "?startTime=abc&endTime=1", f"?startTime={BASE}&endTime={BASE}"])
    def test_query_by_url_invalid_range(self, store, query):
        assert store.query_by_m3u8_url(CHANNEL + query) is None

    def test_stats(self, store):
        store.register_channel("https://cdn.example.com/live/empty/index.m3u8")
        stats = store.stats()
        assert stats == {
            'channels': [{'channel': CHANNEL, 'adsCount': 2, 'earliest': BASE, 'latest': BASE + 1200}],
            'totalAds': 2,
        }
