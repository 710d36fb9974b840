from unittest.mock import MagicMock

import pytest
import requests

from roofmeasure.geocoding import GEOCODING_API_URL, geocode_address


@pytest.fixture
def session():
    return MagicMock()


def _response(payload):
    resp = MagicMock()
    resp.json.return_value = payload
    return resp


def test_geocode_success(session):
    """Verify the first result's location is returned."""
    session.get.return_value = _response({
        "status": "OK",
        "results": [{"geometry": {"location": {"lat": 39.7392, "lng": -104.9903}}}],
    })

    assert geocode_address("1600 Grant St, Denver, CO", "AIza-test", session=session) == (39.7392, -104.9903)
    args, kwargs = session.get.call_args
    assert args[0] == GEOCODING_API_URL
    assert kwargs["params"] == {"address": "1600 Grant St, Denver, CO", "key": "AIza-test"}


def test_geocode_zero_results(session):
    session.get.return_value = _response({"status": "ZERO_RESULTS", "results": []})
    assert geocode_address("nowhere", "AIza-test", session=session) is None


def test_geocode_network_error(session):
    session.get.side_effect = requests.ConnectionError("offline")
    assert geocode_address("1600 Grant St", "AIza-test", session=session) is None
