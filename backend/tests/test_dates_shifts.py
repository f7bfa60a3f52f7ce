"""Unit tests for the date and shift-time helpers."""
from datetime import date, datetime

import pytest

from schllib.dates import (
    BUSINESS_TZ,
    MAX_TIME_DIFFERENCE,
    calculate_time_difference,
    format_date,
    format_long_date,
    format_time,
    get_dates_in_range,
    in_date_range,
    in_timestamp_range,
    js_weekday,
    last_months,
    month_label,
    parse_time,
)
from schllib.shifts import crosses_midnight, shift_times_for, validate_shift_times


class TestFormatting:
    def test_format_date(self):
        assert format_date('2024-03-07') == '07-03-2024'
        assert format_date('2024-03-07T10:00:00.000000Z') == '07-03-2024'
        assert format_date('soon') == ''
        assert format_date(None) == ''

    def test_format_time(self):
        assert format_time('14:05') == '02:05 PM'
        assert format_time('00:00') == '12:00 AM'
        assert format_time('25:00') == ''

    @pytest.mark.parametrize('value,expected', [
        ('2025-01-01', '1st Jan. 2025'),
        ('2025-01-02', '2nd Jan. 2025'),
        ('2025-01-05', '5th Jan. 2025'),
        ('2025-01-13', '13th Jan. 2025'),
        ('2025-01-22', '22nd Jan. 2025'),
    ])
    def test_format_long_date(self, value, expected):
        assert format_long_date(value) == expected

    def test_month_label(self):
        assert month_label(2025, 1) == 'January 2025'


class TestRanges:
    def test_in_date_range(self):
        """Verify the upper bound includes the whole day."""
        assert in_date_range('2024-05-01', None, None)
        assert in_date_range('2024-05-01 late', '2024-05-01', '2024-05-01')
        assert not in_date_range('2024-05-02', '2024-05-01', '2024-05-01')
        assert not in_date_range('2024-04-30', '2024-05-01', None)
        assert not in_date_range(None, '2024-05-01', None)

    def test_in_timestamp_range_uses_dhaka_days(self):
        """Verify UTC timestamps are bucketed into Dhaka calendar days."""
        assert in_timestamp_range('2024-04-30T18:30:00.000000Z', '2024-05-01', '2024-05-01')
        assert not in_timestamp_range('2024-04-30T17:59:59.000000Z', '2024-05-01', '2024-05-01')
        assert not in_timestamp_range('2024-05-01T18:00:00.000000Z', '2024-05-01', '2024-05-01')

    def test_dates_in_range(self):
        assert get_dates_in_range('2024-02-28', '2024-03-01') == ['2024-02-28', '2024-02-29', '2024-03-01']

    def test_last_months_crosses_year(self):
        assert last_months(3, date(2025, 1, 15)) == [(2024, 11), (2024, 12), (2025, 1)]

    def test_js_weekday(self):
        """Verify Sunday is 0 and Saturday is 6."""
        assert js_weekday(date(2025, 1, 5)) == 0
        assert js_weekday(date(2025, 1, 3)) == 5
        assert js_weekday(date(2025, 1, 4)) == 6


class TestTimeDifference:
    def test_minutes_until_deadline(self):
        now = datetime(2024, 5, 1, 8, 0, tzinfo=BUSINESS_TZ)
        assert calculate_time_difference('2024-05-01', '10:00', now=now) == 120

    def test_defaults_to_end_of_day(self):
        now = datetime(2024, 5, 1, 8, 0, tzinfo=BUSINESS_TZ)
        assert calculate_time_difference('2024-05-01', '', now=now) == 959

    def test_overdue_is_negative(self):
        now = datetime(2024, 5, 2, 0, 0, tzinfo=BUSINESS_TZ)
        assert calculate_time_difference('2024-05-01', None, now=now) == -1

    def test_no_delivery_date(self):
        assert calculate_time_difference('', '10:00') == MAX_TIME_DIFFERENCE

    def test_parse_time_rejects_garbage(self):
        with pytest.raises(ValueError):
            parse_time('24:00')
        with pytest.raises(ValueError):
            parse_time('noon')


class TestShiftTimes:
    def test_standard_shifts(self):
        assert shift_times_for('morning') == ('07:00', '15:00', False)
        assert shift_times_for('night') == ('23:00', '07:00', True)

    def test_custom_shift_detects_midnight(self):
        assert shift_times_for('custom', '22:00', '06:00') == ('22:00', '06:00', True)
        assert not crosses_midnight('09:00', '17:00')

    def test_custom_needs_times(self):
        with pytest.raises(ValueError, match='require shiftStart and shiftEnd'):
            shift_times_for('custom', '09:00')

    def test_unknown_type(self):
        with pytest.raises(ValueError, match='Unknown shift type'):
            shift_times_for('lunch')

    @pytest.mark.parametrize('start,end,message', [
        ('25:00', '07:00', 'Invalid shift start time format'),
        ('07:00', '07:75', 'Invalid shift end time format'),
        ('15:00', '07:00', 'Shift end time is before start time'),
    ])
    def test_validate_shift_times(self, start, end, message):
        with pytest.raises(ValueError, match=message):
            validate_shift_times(start, end)

    def test_reversed_times_allowed_when_crossing(self):
        validate_shift_times('15:00', '07:00', crosses=True)
