import pytest
from unittest.mock import MagicMock

from tenacity import wait_none

from roofmeasure.models import ImageryQuality, MeasurementSource, build_measurement
from roofmeasure.providers import HttpProvider, MeasurementProvider


class FakeProvider(MeasurementProvider):
    """Provider returning a canned outcome (or raising a canned exception)."""

    def __init__(self, source, outcome):
        self.source = source
        self.outcome = outcome
        self.calls = 0

    def attempt(self, location):
        self.calls += 1
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


@pytest.fixture
def fake_provider():
    return FakeProvider


@pytest.fixture
def make_measurement():
    def _make(footprint=2000.0, pitch=22.6, multiplier=1.083,
              source=MeasurementSource.GOOGLE_SOLAR, confidence=90,
              quality=ImageryQuality.HIGH, segments=4, imagery_date="2026-06-01",
              has_lidar=False, tier=None):
        return build_measurement(
            footprint_sq_ft=footprint,
            pitch_degrees=pitch,
            pitch_multiplier=multiplier,
            segment_count=segments,
            source=source,
            confidence=confidence,
            imagery_quality=quality,
            imagery_date=imagery_date,
            has_lidar=has_lidar,
            tier=tier,
        )
    return _make


@pytest.fixture
def make_response():
    def _make(status_code=200, payload=None, text=""):
        resp = MagicMock()
        resp.status_code = status_code
        resp.text = text
        if isinstance(payload, Exception):
            resp.json.side_effect = payload
        else:
            resp.json.return_value = payload if payload is not None else {}
        return resp
    return _make


@pytest.fixture
def mock_session():
    return MagicMock()


@pytest.fixture
def no_retry_wait(monkeypatch):
    """Keep tenacity's retry attempts but skip the backoff sleeps."""
    monkeypatch.setattr(HttpProvider._send.retry, "wait", wait_none())
