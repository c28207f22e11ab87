"""
Tests for hour arithmetic, geofencing and local-date helpers.
"""
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from constructtrack.errors import ValidationError
from constructtrack.services.geofence import check_geofence, haversine_distance, outside_reason, round_meters
from constructtrack.services.time_rules import (
    as_utc,
    compute_worked_hours,
    inclusive_days,
    local_date,
    local_day_bounds,
    parse_iso_date,
)


START = datetime(2024, 3, 4, 7, 0, tzinfo=timezone.utc)


class TestWorkedHours:
    def test_long_shift_has_overtime(self):
        total, overtime = compute_worked_hours(START, START + timedelta(hours=9, minutes=30))
        assert total == Decimal("9.50")
        assert overtime == Decimal("1.50")

    def test_short_shift_has_no_overtime(self):
        total, overtime = compute_worked_hours(START, START + timedelta(hours=6))
        assert total == Decimal("6.00")
        assert overtime == Decimal("0.00")

    def test_exactly_eight_hours(self):
        assert compute_worked_hours(START, START + timedelta(hours=8)) == (Decimal("8.00"), Decimal("0.00"))

    def test_rounds_to_two_decimals(self):
        total, _ = compute_worked_hours(START, START + timedelta(minutes=20))
        assert total == Decimal("0.33")

    def test_naive_values_are_treated_as_utc(self):
        naive = START.replace(tzinfo=None)
        assert compute_worked_hours(naive, START + timedelta(hours=2))[0] == Decimal("2.00")

    def test_custom_threshold(self):
        _, overtime = compute_worked_hours(START, START + timedelta(hours=7), threshold_hours=6)
        assert overtime == Decimal("1.00")


class TestLocalDates:
    def test_local_date_crosses_midnight(self):
        late = datetime(2024, 3, 4, 23, 30, tzinfo=timezone.utc)
        assert local_date(late, "Europe/Madrid") == date(2024, 3, 5)
        assert local_date(late, "UTC") == date(2024, 3, 4)

    def test_day_bounds_cover_whole_end_day(self):
        lower, upper = local_day_bounds(date(2024, 3, 1), date(2024, 3, 31), "UTC")
        assert lower == datetime(2024, 3, 1, tzinfo=timezone.utc)
        assert upper == datetime(2024, 3, 31, 23, 59, 59, 999999, tzinfo=timezone.utc)

    def test_day_bounds_in_madrid(self):
        lower, _ = local_day_bounds(date(2024, 1, 10), date(2024, 1, 10), "Europe/Madrid")
        assert as_utc(lower) == datetime(2024, 1, 9, 23, 0, tzinfo=timezone.utc)

    def test_inclusive_days(self):
        assert inclusive_days(date(2024, 7, 1), date(2024, 7, 5)) == 5
        assert inclusive_days(date(2024, 7, 1), date(2024, 7, 1)) == 1

    def test_parse_iso_date(self):
        assert parse_iso_date("2024-03-01") == date(2024, 3, 1)
        assert parse_iso_date("2024-03-01T10:00:00Z") == date(2024, 3, 1)

    @pytest.mark.parametrize("value", ["", "yesterday", "2024-13-01"])
    def test_parse_iso_date_rejects_garbage(self, value):
        with pytest.raises(ValidationError):
            parse_iso_date(value)


class TestGeofence:
    SITE = (40.4168, -3.7038)

    def test_same_point_is_inside(self):
        inside, distance = check_geofence(*self.SITE, *self.SITE, 100)
        assert inside is True
        assert distance == pytest.approx(0.0)

    def test_point_outside_radius(self):
        # ~0.0045 degrees of latitude is about 500 m
        inside, distance = check_geofence(self.SITE[0] + 0.0045, self.SITE[1], *self.SITE, 100)
        assert inside is False
        assert 480 < distance < 520

    def test_missing_coordinates_skip_the_check(self):
        assert check_geofence(None, None, *self.SITE, 100) == (True, None)
        assert check_geofence(*self.SITE, None, None, 100) == (True, None)

    def test_default_radius_applies(self):
        inside, _ = check_geofence(self.SITE[0] + 0.0005, self.SITE[1], *self.SITE, None)
        assert inside is True

    def test_haversine_known_distance(self):
        # Madrid Puerta del Sol to Barcelona Placa Catalunya, roughly 505 km
        d = haversine_distance(40.4168, -3.7038, 41.3870, 2.1700)
        assert 500_000 < d < 510_000

    def test_reason_uses_whole_meters(self):
        assert round_meters(152.5) == 153
        assert round_meters(152.49) == 152
        assert outside_reason("Check-in", 152.5) == "Check-in outside geofence (153m from site)"
