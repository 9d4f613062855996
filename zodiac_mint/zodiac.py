"""Zodiac systems, signs and their elements."""
import datetime
from dataclasses import dataclass


@dataclass(frozen=True)
class Sign:
    name: str
    element: str
    symbol: str = ''


UNKNOWN_SIGN = Sign('Unknown', 'Unknown')

WESTERN_SIGNS = [
    # (name, element, symbol, start (month, day), end (month, day))
    ('Capricorn', 'Earth', '♑', (12, 22), (1, 19)),
    ('Aquarius', 'Air', '♒', (1, 20), (2, 18)),
    ('Pisces', 'Water', '♓', (2, 19), (3, 20)),
    ('Aries', 'Fire', '♈', (3, 21), (4, 19)),
    ('Taurus', 'Earth', '♉', (4, 20), (5, 20)),
    ('Gemini', 'Air', '♊', (5, 21), (6, 20)),
    ('Cancer', 'Water', '♋', (6, 21), (7, 22)),
    ('Leo', 'Fire', '♌', (7, 23), (8, 22)),
    ('Virgo', 'Earth', '♍', (8, 23), (9, 22)),
    ('Libra', 'Air', '♎', (9, 23), (10, 22)),
    ('Scorpio', 'Water', '♏', (10, 23), (11, 21)),
    ('Sagittarius', 'Fire', '♐', (11, 22), (12, 21)),
]

VEDIC_SIGNS = [
    ('Mesha (Aries)', 'Fire', '♈', (4, 14), (5, 14)),
    ('Vrishabha (Taurus)', 'Earth', '♉', (5, 15), (6, 14)),
    ('Mithuna (Gemini)', 'Air', '♊', (6, 15), (7, 14)),
    ('Karka (Cancer)', 'Water', '♋', (7, 15), (8, 14)),
    ('Simha (Leo)', 'Fire', '♌', (8, 15), (9, 15)),
    ('Kanya (Virgo)', 'Earth', '♍', (9, 16), (10, 15)),
    ('Tula (Libra)', 'Air', '♎', (10, 16), (11, 14)),
    ('Vrishchika (Scorpio)', 'Water', '♏', (11, 15), (12, 14)),
    ('Dhanu (Sagittarius)', 'Fire', '♐', (12, 15), (1, 13)),
    ('Makara (Capricorn)', 'Earth', '♑', (1, 14), (2, 12)),
    ('Kumbha (Aquarius)', 'Air', '♒', (2, 13), (3, 14)),
    ('Meena (Pisces)', 'Water', '♓', (3, 15), (4, 13)),
]

# Ordered so that index == year % 12 maps through CHINESE_CYCLE_INDEX
CHINESE_SIGNS = [
    Sign('Rat', 'Water', '🐀'),
    Sign('Ox', 'Earth', '🐂'),
    Sign('Tiger', 'Wood', '🐅'),
    Sign('Rabbit', 'Wood', '🐇'),
    Sign('Dragon', 'Earth', '🐉'),
    Sign('Snake', 'Fire', '🐍'),
    Sign('Horse', 'Fire', '🐎'),
    Sign('Goat', 'Earth', '🐐'),
    Sign('Monkey', 'Metal', '🐒'),
    Sign('Rooster', 'Metal', '🐓'),
    Sign('Dog', 'Earth', '🐕'),
    Sign('Pig', 'Water', '🐖'),
]
CHINESE_CYCLE_INDEX = [8, 9, 10, 11, 0, 1, 2, 3, 4, 5, 6, 7]

# Tzolk'in day signs; the colour/direction cycle (red, white, blue, yellow)
# is expressed as Fire, Air, Water, Earth.
MAYAN_SIGNS = [
    Sign(name, ('Fire', 'Air', 'Water', 'Earth')[i % 4])
    for i, name in enumerate([
        'Imix', 'Ik', 'Akbal', 'Kan', 'Chicchan', 'Cimi', 'Manik', 'Lamat',
        'Muluc', 'Oc', 'Chuen', 'Eb', 'Ben', 'Ix', 'Men', 'Cib', 'Caban',
        'Etznab', 'Cauac', 'Ahau',
    ])
]

ZODIAC_TYPES = ('western', 'chinese', 'vedic', 'mayan')


def _ranged_signs(table):
    return [Sign(name, element, symbol) for name, element, symbol, _, _ in table]


SIGNS = {
    'western': _ranged_signs(WESTERN_SIGNS),
    'vedic': _ranged_signs(VEDIC_SIGNS),
    'chinese': CHINESE_SIGNS,
    'mayan': MAYAN_SIGNS,
}


def _in_range(month, day, start, end):
    return (month == start[0] and day >= start[1]) or (month == end[0] and day <= end[1])


def _sign_by_date(table, month, day):
    for name, element, symbol, start, end in table:
        if _in_range(month, day, start, end):
            return Sign(name, element, symbol)
    return UNKNOWN_SIGN


def western_sign(day, month):
    return _sign_by_date(WESTERN_SIGNS, month, day)


def vedic_sign(day, month):
    return _sign_by_date(VEDIC_SIGNS, month, day)


def chinese_sign(year):
    return CHINESE_SIGNS[CHINESE_CYCLE_INDEX[year % 12]]


def mayan_sign(day, month, year):
    # Gregorian date to Julian day number
    a = (14 - month) // 12
    y = year + 4800 - a
    m = month + 12 * a - 3
    jdn = day + (153 * m + 2) // 5 + 365 * y + y // 4 - y // 100 + y // 400 - 32045
    tzolkin_day = (jdn + 4) % 20 or 20
    return MAYAN_SIGNS[tzolkin_day - 1]


def sign_for_birthdate(zodiac_type, birthdate: datetime.date):
    if zodiac_type == 'western':
        return western_sign(birthdate.day, birthdate.month)
    if zodiac_type == 'vedic':
        return vedic_sign(birthdate.day, birthdate.month)
    if zodiac_type == 'chinese':
        return chinese_sign(birthdate.year)
    if zodiac_type == 'mayan':
        return mayan_sign(birthdate.day, birthdate.month, birthdate.year)
    raise ValueError(f'Unknown zodiac type: {zodiac_type}')


def find_sign(zodiac_type, name):
    """Look a sign up by exact name, then by partial name."""
    signs = SIGNS.get(zodiac_type, [])
    for sign in signs:
        if sign.name == name:
            return sign
    for sign in signs:
        if name and name in sign.name:
            return sign
    return Sign(name, 'Unknown')
