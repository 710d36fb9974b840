import json
from unittest.mock import patch

import pytest

from roofmeasure.cli import main
from roofmeasure.models import MeasurementSource, ProviderFailure
from roofmeasure.resolver import TIERS, Tier


@pytest.fixture(autouse=True)
def no_env_keys(monkeypatch):
    for name in ("GOOGLE_SOLAR_API_KEY", "GOOGLE_API_KEY", "INSTANT_ROOFER_API_KEY", "GOOGLE_MAPS_API_KEY"):
        monkeypatch.delenv(name, raising=False)


def test_manual_path(capsys):
    main(["--manual-area", "1500", "--manual-pitch", "30", "--quiet"])
    out = capsys.readouterr().out

    assert "Tier:       7 - Manual Polygon Tracing" in out
    assert "Confidence: 85%" in out
    assert "manual-tracing" in out


def test_manual_path_json(tmp_path, capsys):
    output = tmp_path / "report.json"
    main(["--manual-area", "1500", "--json", str(output), "--quiet"])

    data = json.loads(output.read_text())
    assert data["tier_used"] == 7
    assert data["confidence"]["score"] == 85
    assert data["confidence"]["level"] == "high"
    assert data["measurement"]["source"] == "manual-tracing"
    assert data["measurement"]["pitch_degrees"] == 20.0


def test_invalid_manual_area_exits(capsys):
    with pytest.raises(SystemExit) as exc:
        main(["--manual-area", "0"])
    assert exc.value.code == 1
    assert "ERROR: Valid manual area is required" in capsys.readouterr().out


def test_missing_location_exits(capsys):
    with pytest.raises(SystemExit) as exc:
        main([])
    assert exc.value.code == 1
    assert "ERROR: Provide --address or --lat/--lng" in capsys.readouterr().out


def test_geocoding_failure_exits(capsys):
    with patch("roofmeasure.cli.geocode_address", return_value=None):
        with pytest.raises(SystemExit) as exc:
            main(["--address", "1 Nowhere Rd", "--api-key", "AIza-test"])
    assert exc.value.code == 1
    assert "Failed to geocode address" in capsys.readouterr().out


def test_missing_reports_file_exits(tmp_path, capsys):
    with pytest.raises(SystemExit) as exc:
        main(["--manual-area", "1500", "--reports", str(tmp_path / "missing.json")])
    assert exc.value.code == 1


def test_coordinates_resolve_through_tiers(fake_provider, make_measurement, capsys):
    lidar = fake_provider(MeasurementSource.INSTANT_ROOFER, ProviderFailure("No LiDAR coverage for this location"))
    osm = fake_provider(MeasurementSource.OPENSTREETMAP,
                        make_measurement(source=MeasurementSource.OPENSTREETMAP, confidence=60, quality=None))
    tiers = [Tier(TIERS[1], lidar), Tier(TIERS[5], osm)]

    with patch("roofmeasure.engine.build_default_tiers", return_value=tiers), \
            patch("roofmeasure.engine.build_source_providers", return_value=[]):
        main(["--lat", "39.7392", "--lng", "-104.9903"])

    out = capsys.readouterr().out
    assert "[1/3] Using coordinates: (39.7392, -104.9903)" in out
    assert "Tier:       5 - OpenStreetMap + Estimated Pitch" in out
    assert "[1] LiDAR (Instant Roofer): No LiDAR coverage for this location" in out


def test_malformed_reports_file_exits(tmp_path, capsys):
    reports = tmp_path / "reports.json"
    reports.write_text(json.dumps([
        {"address": "1 Test St, Denver, CO", "lat": "north", "lng": -104.99,
         "total_squares": 20, "report_date": "2026-01-15"},
    ]))

    with pytest.raises(SystemExit) as exc:
        main(["--manual-area", "1500", "--reports", str(reports)])
    assert exc.value.code == 1
    assert "ERROR:" in capsys.readouterr().out
