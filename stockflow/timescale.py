"""Parsing and scaling of time strings.

Model durations are usually written with a unit, e.g. ``'40 s'`` for a load
time or ``'8 h'`` for a shift. Simulation time itself is unitless; the
environment's timescale relates the two.

"""
from typing import Optional, Tuple, Union
import re

TimeValue = Tuple[Union[int, float], str]

# Number of each unit in one second.
_unit_map = {
    'fs': 1e15,
    'ps': 1e12,
    'ns': 1e9,
    'us': 1e6,
    'ms': 1e3,
    's': 1e0,
    'min': 1 / 60,
    'h': 1 / 3600,
    'd': 1 / 86400,
}

_num_re = r'[-+]? (?: \d*\.\d+ | \d+\.?\d* ) (?: [eE] [-+]? \d+)?'

_timescale_re = re.compile(
    rf'(?P<num>{_num_re})?' r'\s?' r'(?P<unit> min | [hd] | [fpnum]? s)?',
    re.VERBOSE,
)


def parse_time(time_str: str, default_unit: Optional[str] = None) -> TimeValue:
    """Parse a string containing a time magnitude and optional unit.

    :param str time_str: Time string to parse.
    :param str default_unit:
        Unit to apply when `time_str` has none.
    :returns:
        `(magnitude, unit)` tuple where magnitude is numeric (int or float) and
        the unit is one of "fs", "ps", "ns", "us", "ms", "s", "min", "h" or
        "d".
    :raises ValueError:
        If the string cannot be parsed or is missing a unit and no
        `default_unit` is given.

    """
    match = _timescale_re.match(time_str)
    if not match or not time_str:
        raise ValueError(f'Invalid time string "{time_str}"')
    num_str = match.group('num')
    if num_str:
        try:
            num: Union[int, float] = int(num_str)
        except ValueError:
            num = float(num_str)
    else:
        num = 1

    unit = match.group('unit') or default_unit
    if not unit:
        raise ValueError(f'No unit specified in "{time_str}"')
    if match.end() != len(time_str):
        raise ValueError(f'Trailing characters in time string "{time_str}"')
    return num, unit


def scale_time(from_time: TimeValue, to_time: TimeValue) -> Union[int, float]:
    """Scale `from_time` to a multiple of `to_time`.

    >>> scale_time((2, 'h'), (1, 'min'))
    120

    """
    from_t, from_u = from_time
    to_t, to_u = to_time
    scaled = (_unit_map[to_u] / _unit_map[from_u] * from_t) / to_t
    rounded = round(scaled)
    if abs(scaled - rounded) < 1e-9 * max(1, abs(scaled)):
        return int(rounded)
    return scaled
