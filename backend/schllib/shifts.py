"""Standard shift times and shift-time validation."""
from typing import Dict, Optional, Tuple

SHIFT_TYPES = ('morning', 'evening', 'night', 'custom')
OVERRIDE_TYPES = ('replace', 'cancel', 'off_day')

STANDARD_SHIFTS: Dict[str, Dict] = {
    'morning': {'start': '07:00', 'end': '15:00', 'crosses_midnight': False},
    'evening': {'start': '15:00', 'end': '23:00', 'crosses_midnight': False},
    'night': {'start': '23:00', 'end': '07:00', 'crosses_midnight': True},
}


def _split(value: str) -> Tuple[int, int]:
    """Lenient HH:MM split; missing parts count as 0, garbage as -1."""
    parts = (value or '').split(':')

    def _num(p: str) -> int:
        p = p.strip()
        if not p:
            return 0
        return int(p) if p.isdigit() else -1

    hour = _num(parts[0]) if parts else 0
    minute = _num(parts[1]) if len(parts) > 1 else 0
    return hour, minute


def crosses_midnight(shift_start: str, shift_end: str) -> bool:
    """A shift crosses midnight when its end hour is before its start hour."""
    return _split(shift_end)[0] < _split(shift_start)[0]


def validate_shift_times(shift_start: str, shift_end: str, crosses: bool = False) -> None:
    """Raise ValueError with a user-facing message for impossible shift times."""
    start_hour, start_min = _split(shift_start)
    end_hour, end_min = _split(shift_end)
    if not (0 <= start_hour <= 23 and 0 <= start_min <= 59):
        raise ValueError('Invalid shift start time format')
    if not (0 <= end_hour <= 23 and 0 <= end_min <= 59):
        raise ValueError('Invalid shift end time format')
    if end_hour * 60 + end_min < start_hour * 60 + start_min and not crosses:
        raise ValueError(
            'Shift end time is before start time. '
            'Set crossesMidnight to true for shifts crossing midnight.'
        )


def shift_times_for(
    shift_type: str,
    shift_start: Optional[str] = None,
    shift_end: Optional[str] = None,
) -> Tuple[str, str, bool]:
    """Resolve (start, end, crosses_midnight) for a shift type.

    Custom shifts take the given times; standard shifts use the lookup table.
    """
    if shift_type == 'custom':
        if not shift_start or not shift_end:
            raise ValueError('Custom shifts require shiftStart and shiftEnd')
        crosses = crosses_midnight(shift_start, shift_end)
    else:
        standard = STANDARD_SHIFTS.get(shift_type)
        if standard is None:
            raise ValueError(f'Unknown shift type: {shift_type}')
        shift_start, shift_end = standard['start'], standard['end']
        crosses = standard['crosses_midnight']
    validate_shift_times(shift_start, shift_end, crosses)
    return shift_start, shift_end, crosses
