"""Tests for the facility index, its loader and the redirect advisor."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path

import pytest

from models.readings import CanonicalReading, Facility, Location
from services.facilities import FacilityIndex, build_default_index, haversine_miles, load_facilities
from services.processor import ReadingProcessor
from services.redirect import RedirectAdvisor

DATA_FILE = Path(__file__).resolve().parents[1] / "data" / "facilities.json"
AT = datetime(2025, 2, 14, 9, 0, tzinfo=timezone.utc)


def _index() -> FacilityIndex:
    return FacilityIndex(
        [
            Facility("Far", 38.5, -121.5),
            Facility("Near", 37.78, -122.42),
            Facility("Here", 37.7749, -122.4194),
            Facility("Middle", 37.8, -122.27),
        ]
    )


def test_haversine_known_distance() -> None:
    # San Francisco to Los Angeles is roughly 347 miles as the crow flies.
    distance = haversine_miles(37.7749, -122.4194, 34.0522, -118.2437)

    assert distance == pytest.approx(347, abs=3)
    assert haversine_miles(10.0, 20.0, 10.0, 20.0) == 0.0


def test_nearest_returns_closest_first() -> None:
    candidates = _index().nearest(37.7749, -122.4194, k=3)

    assert [candidate.facility.name for candidate in candidates] == ["Here", "Near", "Middle"]
    assert candidates[0].distance_mi == pytest.approx(0.0, abs=1e-9)
    distances = [candidate.distance_mi for candidate in candidates]
    assert distances == sorted(distances)


def test_nearest_is_deterministic_and_stable_for_ties() -> None:
    index = FacilityIndex(
        [
            Facility("North", 1.0, 0.0),
            Facility("South", -1.0, 0.0),
            Facility("East", 0.0, 1.0),
        ]
    )

    first = index.nearest(0.0, 0.0, k=3)
    second = index.nearest(0.0, 0.0, k=3)

    assert first == second
    assert [candidate.facility.name for candidate in first][:2] == ["North", "South"]


@pytest.mark.parametrize("k", [0, -1])
def test_nearest_with_non_positive_k_is_empty(k: int) -> None:
    assert _index().nearest(37.0, -122.0, k=k) == []


def test_nearest_with_k_above_size_returns_everything() -> None:
    assert len(_index().nearest(37.0, -122.0, k=50)) == 4


def test_nearest_on_empty_index() -> None:
    assert FacilityIndex().nearest(37.0, -122.0) == []


def test_bundled_dataset_finds_san_francisco_general_first() -> None:
    index = FacilityIndex(load_facilities(DATA_FILE))

    candidates = index.nearest(37.7557, -122.4048, k=5)

    assert len(candidates) == 5
    assert candidates[0].facility.name == "Zuckerberg San Francisco General Hospital"
    assert candidates[0].distance_mi == pytest.approx(0.0, abs=1e-9)


def test_loader_skips_malformed_entries(tmp_path, caplog) -> None:
    path = tmp_path / "facilities.json"
    path.write_text(
        json.dumps(
            [
                {"name": "Good", "lat": 37.0, "lng": -122.0, "city": "Somewhere"},
                {"name": "", "lat": 1.0, "lng": 1.0},
                {"name": "No coords"},
                {"name": "Out of range", "lat": 120.0, "lng": 0.0},
                "not an object",
            ]
        ),
        encoding="utf-8",
    )

    with caplog.at_level(logging.WARNING):
        facilities = load_facilities(path)

    assert facilities == [Facility("Good", 37.0, -122.0, city="Somewhere")]
    skipped = [record for record in caplog.records if "malformed facility" in record.getMessage()]
    assert len(skipped) == 4


def test_default_index_is_empty_when_dataset_missing(tmp_path, caplog) -> None:
    build_default_index.cache_clear()
    try:
        with caplog.at_level(logging.WARNING):
            index = build_default_index(str(tmp_path / "missing.json"))
        assert len(index) == 0
        assert any("redirect suggestions disabled" in record.getMessage() for record in caplog.records)
    finally:
        build_default_index.cache_clear()


def _critical_view(location=None):
    processor = ReadingProcessor(synthesize_path=False)
    processor.ingest(
        CanonicalReading(device_id="DEV-001", observed_at=AT, temperature_c=9.0, location=location)
    )
    return processor.view()


def test_advisor_suggests_on_critical_alert_with_location() -> None:
    advisor = RedirectAdvisor(_index(), limit=2)

    candidates = advisor.suggest(_critical_view(Location(37.7749, -122.4194)))

    assert [candidate.facility.name for candidate in candidates] == ["Here", "Near"]


def test_advisor_respects_accepted_redirect() -> None:
    advisor = RedirectAdvisor(_index())
    view = _critical_view(Location(37.7749, -122.4194))

    assert advisor.should_suggest(view, redirect_accepted=True) is False
    assert advisor.suggest(view, redirect_accepted=True) == []


def test_advisor_needs_a_real_fix() -> None:
    advisor = RedirectAdvisor(_index())

    assert advisor.suggest(_critical_view()) == []


def test_advisor_ignores_warning_alerts() -> None:
    processor = ReadingProcessor(synthesize_path=False)
    processor.ingest(
        CanonicalReading(
            device_id="DEV-001",
            observed_at=AT,
            temperature_c=4.0,
            shock_g=1.8,
            location=Location(37.7749, -122.4194),
        )
    )

    assert RedirectAdvisor(_index()).suggest(processor.view()) == []


def test_haversine_survives_near_antipodal_points() -> None:
    half_circumference = haversine_miles(0.0, 0.0, 0.0, 180.0)

    for step in range(900):
        lat = step / 10
        distance = haversine_miles(lat, 0.0, -lat, 180.0)
        assert distance == pytest.approx(half_circumference, rel=1e-6)


def test_nearest_to_antipode_of_facility() -> None:
    index = FacilityIndex([Facility("Antipode", -0.08, 180.0), Facility("Origin", 0.0, 0.0)])

    candidates = index.nearest(0.08, 0.0, k=2)

    assert [candidate.facility.name for candidate in candidates] == ["Origin", "Antipode"]
