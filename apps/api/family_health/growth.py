"""WHO child growth standards (0-60 months) using the LMS method.

Each table maps age in months to the Box-Cox power (L), median (M) and
coefficient of variation (S). Ages between tabulated points are linearly
interpolated.
"""
from __future__ import annotations

import math
from datetime import date
from statistics import NormalDist
from typing import Dict, Iterable, List, NamedTuple, Optional, Tuple

from .schemas import ChartPoint, Gender, GrowthMeasurement, MilestoneType, StatusLevel

MAX_AGE_MONTHS = 60


class LMS(NamedTuple):
    L: float
    M: float
    S: float


HEIGHT_FOR_AGE_BOYS: Dict[int, LMS] = {
    0: LMS(1, 49.9, 0.03795),
    1: LMS(1, 54.7, 0.03557),
    2: LMS(1, 58.4, 0.03424),
    3: LMS(1, 61.4, 0.03328),
    4: LMS(1, 63.9, 0.03257),
    5: LMS(1, 65.9, 0.03204),
    6: LMS(1, 67.6, 0.03165),
    7: LMS(1, 69.2, 0.03139),
    8: LMS(1, 70.6, 0.03124),
    9: LMS(1, 72.0, 0.03117),
    10: LMS(1, 73.3, 0.03118),
    11: LMS(1, 74.5, 0.03125),
    12: LMS(1, 75.7, 0.03137),
    15: LMS(1, 79.1, 0.03181),
    18: LMS(1, 82.3, 0.03234),
    21: LMS(1, 85.1, 0.03288),
    24: LMS(1, 87.8, 0.03340),
    27: LMS(1, 90.2, 0.03388),
    30: LMS(1, 92.4, 0.03431),
    33: LMS(1, 94.5, 0.03470),
    36: LMS(1, 96.5, 0.03506),
    39: LMS(1, 98.4, 0.03538),
    42: LMS(1, 100.2, 0.03567),
    45: LMS(1, 102.0, 0.03594),
    48: LMS(1, 103.7, 0.03619),
    51: LMS(1, 105.3, 0.03641),
    54: LMS(1, 106.9, 0.03662),
    57: LMS(1, 108.5, 0.03682),
    60: LMS(1, 110.0, 0.03699),
}

HEIGHT_FOR_AGE_GIRLS: Dict[int, LMS] = {
    0: LMS(1, 49.1, 0.03790),
    1: LMS(1, 53.7, 0.03545),
    2: LMS(1, 57.1, 0.03423),
    3: LMS(1, 59.8, 0.03348),
    4: LMS(1, 62.1, 0.03299),
    5: LMS(1, 64.0, 0.03265),
    6: LMS(1, 65.7, 0.03244),
    7: LMS(1, 67.3, 0.03232),
    8: LMS(1, 68.7, 0.03228),
    9: LMS(1, 70.1, 0.03231),
    10: LMS(1, 71.5, 0.03239),
    11: LMS(1, 72.8, 0.03252),
    12: LMS(1, 74.0, 0.03269),
    15: LMS(1, 77.5, 0.03324),
    18: LMS(1, 80.7, 0.03385),
    21: LMS(1, 83.7, 0.03447),
    24: LMS(1, 86.4, 0.03507),
    27: LMS(1, 88.9, 0.03562),
    30: LMS(1, 91.2, 0.03612),
    33: LMS(1, 93.4, 0.03658),
    36: LMS(1, 95.4, 0.03700),
    39: LMS(1, 97.4, 0.03738),
    42: LMS(1, 99.3, 0.03773),
    45: LMS(1, 101.1, 0.03806),
    48: LMS(1, 102.9, 0.03836),
    51: LMS(1, 104.6, 0.03864),
    54: LMS(1, 106.2, 0.03890),
    57: LMS(1, 107.8, 0.03914),
    60: LMS(1, 109.4, 0.03937),
}

WEIGHT_FOR_AGE_BOYS: Dict[int, LMS] = {
    0: LMS(0.3487, 3.3464, 0.14602),
    1: LMS(0.2297, 4.4709, 0.13395),
    2: LMS(0.1970, 5.5675, 0.12385),
    3: LMS(0.1738, 6.3762, 0.11727),
    4: LMS(0.1553, 7.0023, 0.11316),
    5: LMS(0.1395, 7.5105, 0.11080),
    6: LMS(0.1257, 7.9340, 0.10958),
    7: LMS(0.1134, 8.2970, 0.10902),
    8: LMS(0.1021, 8.6151, 0.10882),
    9: LMS(0.0917, 8.9014, 0.10881),
    10: LMS(0.0822, 9.1649, 0.10891),
    11: LMS(0.0732, 9.4122, 0.10906),
    12: LMS(0.0648, 9.6479, 0.10925),
    15: LMS(0.0424, 10.3002, 0.10949),
    18: LMS(0.0232, 10.9000, 0.10966),
    21: LMS(0.0068, 11.4546, 0.10988),
    24: LMS(-0.0083, 11.9873, 0.11020),
    27: LMS(-0.0217, 12.4969, 0.11065),
    30: LMS(-0.0334, 12.9854, 0.11119),
    33: LMS(-0.0437, 13.4566, 0.11183),
    36: LMS(-0.0524, 13.9145, 0.11254),
    39: LMS(-0.0598, 14.3608, 0.11332),
    42: LMS(-0.0660, 14.7970, 0.11415),
    45: LMS(-0.0711, 15.2252, 0.11504),
    48: LMS(-0.0752, 15.6471, 0.11598),
    51: LMS(-0.0786, 16.0647, 0.11695),
    54: LMS(-0.0812, 16.4796, 0.11797),
    57: LMS(-0.0833, 16.8932, 0.11901),
    60: LMS(-0.0848, 17.3069, 0.12008),
}

WEIGHT_FOR_AGE_GIRLS: Dict[int, LMS] = {
    0: LMS(0.3809, 3.2322, 0.14171),
    1: LMS(0.1714, 4.1873, 0.13724),
    2: LMS(0.0962, 5.1282, 0.13000),
    3: LMS(0.0402, 5.8458, 0.12619),
    4: LMS(-0.0050, 6.4237, 0.12402),
    5: LMS(-0.0430, 6.8985, 0.12274),
    6: LMS(-0.0756, 7.2970, 0.12204),
    7: LMS(-0.1039, 7.6422, 0.12178),
    8: LMS(-0.1288, 7.9487, 0.12181),
    9: LMS(-0.1507, 8.2254, 0.12199),
    10: LMS(-0.1700, 8.4800, 0.12223),
    11: LMS(-0.1872, 8.7192, 0.12247),
    12: LMS(-0.2024, 8.9481, 0.12268),
    15: LMS(-0.2378, 9.5246, 0.12316),
    18: LMS(-0.2630, 10.0569, 0.12369),
    21: LMS(-0.2821, 10.5435, 0.12431),
    24: LMS(-0.2966, 11.0051, 0.12505),
    27: LMS(-0.3073, 11.4514, 0.12590),
    30: LMS(-0.3150, 11.8879, 0.12687),
    33: LMS(-0.3203, 12.3181, 0.12793),
    36: LMS(-0.3238, 12.7450, 0.12908),
    39: LMS(-0.3258, 13.1706, 0.13030),
    42: LMS(-0.3267, 13.5960, 0.13159),
    45: LMS(-0.3267, 14.0227, 0.13294),
    48: LMS(-0.3261, 14.4519, 0.13434),
    51: LMS(-0.3249, 14.8847, 0.13580),
    54: LMS(-0.3233, 15.3222, 0.13730),
    57: LMS(-0.3214, 15.7654, 0.13884),
    60: LMS(-0.3194, 16.2154, 0.14042),
}

BMI_FOR_AGE_BOYS: Dict[int, LMS] = {
    0: LMS(0.0631, 13.4069, 0.09210),
    1: LMS(-0.0756, 14.9441, 0.08941),
    2: LMS(-0.1756, 16.3449, 0.08676),
    3: LMS(-0.2537, 16.9392, 0.08512),
    4: LMS(-0.3143, 17.2306, 0.08402),
    5: LMS(-0.3611, 17.3671, 0.08317),
    6: LMS(-0.3966, 17.4133, 0.08247),
    7: LMS(-0.4227, 17.4006, 0.08186),
    8: LMS(-0.4410, 17.3478, 0.08132),
    9: LMS(-0.4527, 17.2647, 0.08084),
    10: LMS(-0.4589, 17.1614, 0.08042),
    11: LMS(-0.4604, 17.0466, 0.08006),
    12: LMS(-0.4580, 16.9283, 0.07977),
    15: LMS(-0.4341, 16.5817, 0.07927),
    18: LMS(-0.3971, 16.2817, 0.07918),
    21: LMS(-0.3521, 16.0131, 0.07942),
    24: LMS(-0.3027, 15.7686, 0.07990),
    27: LMS(-0.2512, 15.5498, 0.08056),
    30: LMS(-0.1994, 15.3569, 0.08135),
    33: LMS(-0.1484, 15.1877, 0.08225),
    36: LMS(-0.0989, 15.0398, 0.08323),
    39: LMS(-0.0515, 14.9106, 0.08427),
    42: LMS(-0.0065, 14.7976, 0.08537),
    45: LMS(0.0361, 14.6986, 0.08651),
    48: LMS(0.0764, 14.6116, 0.08769),
    51: LMS(0.1145, 14.5350, 0.08890),
    54: LMS(0.1506, 14.4674, 0.09014),
    57: LMS(0.1848, 14.4077, 0.09140),
    60: LMS(0.2173, 14.3551, 0.09268),
}

BMI_FOR_AGE_GIRLS: Dict[int, LMS] = {
    0: LMS(0.0631, 13.3363, 0.09274),
    1: LMS(-0.1163, 14.5679, 0.09498),
    2: LMS(-0.2384, 15.7477, 0.09498),
    3: LMS(-0.3272, 16.3817, 0.09424),
    4: LMS(-0.3935, 16.6879, 0.09339),
    5: LMS(-0.4434, 16.8293, 0.09260),
    6: LMS(-0.4810, 16.8756, 0.09190),
    7: LMS(-0.5091, 16.8631, 0.09130),
    8: LMS(-0.5297, 16.8091, 0.09079),
    9: LMS(-0.5440, 16.7256, 0.09037),
    10: LMS(-0.5531, 16.6214, 0.09003),
    11: LMS(-0.5577, 16.5035, 0.08976),
    12: LMS(-0.5586, 16.3792, 0.08955),
    15: LMS(-0.5452, 16.0402, 0.08929),
    18: LMS(-0.5182, 15.7292, 0.08941),
    21: LMS(-0.4827, 15.4463, 0.08980),
    24: LMS(-0.4424, 15.1919, 0.09039),
    27: LMS(-0.3996, 14.9666, 0.09113),
    30: LMS(-0.3559, 14.7693, 0.09198),
    33: LMS(-0.3124, 14.5977, 0.09292),
    36: LMS(-0.2698, 14.4490, 0.09392),
    39: LMS(-0.2286, 14.3204, 0.09498),
    42: LMS(-0.1893, 14.2093, 0.09608),
    45: LMS(-0.1519, 14.1133, 0.09721),
    48: LMS(-0.1167, 14.0303, 0.09838),
    51: LMS(-0.0837, 13.9586, 0.09957),
    54: LMS(-0.0529, 13.8968, 0.10079),
    57: LMS(-0.0243, 13.8437, 0.10202),
    60: LMS(0.0022, 13.7983, 0.10327),
}

HEAD_CIRC_FOR_AGE_BOYS: Dict[int, LMS] = {
    0: LMS(1, 34.5, 0.03686),
    1: LMS(1, 37.3, 0.03133),
    2: LMS(1, 39.1, 0.02997),
    3: LMS(1, 40.5, 0.02918),
    4: LMS(1, 41.6, 0.02868),
    5: LMS(1, 42.6, 0.02837),
    6: LMS(1, 43.3, 0.02817),
    7: LMS(1, 44.0, 0.02804),
    8: LMS(1, 44.5, 0.02796),
    9: LMS(1, 45.0, 0.02792),
    10: LMS(1, 45.4, 0.02790),
    11: LMS(1, 45.8, 0.02789),
    12: LMS(1, 46.1, 0.02789),
    15: LMS(1, 46.8, 0.02791),
    18: LMS(1, 47.4, 0.02795),
    21: LMS(1, 47.8, 0.02800),
    24: LMS(1, 48.2, 0.02806),
    27: LMS(1, 48.5, 0.02812),
    30: LMS(1, 48.8, 0.02819),
    33: LMS(1, 49.0, 0.02826),
    36: LMS(1, 49.2, 0.02833),
    39: LMS(1, 49.4, 0.02840),
    42: LMS(1, 49.5, 0.02847),
    45: LMS(1, 49.7, 0.02854),
    48: LMS(1, 49.8, 0.02861),
    51: LMS(1, 49.9, 0.02868),
    54: LMS(1, 50.0, 0.02875),
    57: LMS(1, 50.1, 0.02882),
    60: LMS(1, 50.2, 0.02889),
}

HEAD_CIRC_FOR_AGE_GIRLS: Dict[int, LMS] = {
    0: LMS(1, 33.9, 0.03496),
    1: LMS(1, 36.5, 0.03099),
    2: LMS(1, 38.3, 0.02997),
    3: LMS(1, 39.5, 0.02941),
    4: LMS(1, 40.6, 0.02907),
    5: LMS(1, 41.5, 0.02884),
    6: LMS(1, 42.2, 0.02869),
    7: LMS(1, 42.8, 0.02858),
    8: LMS(1, 43.4, 0.02851),
    9: LMS(1, 43.8, 0.02846),
    10: LMS(1, 44.2, 0.02843),
    11: LMS(1, 44.6, 0.02841),
    12: LMS(1, 44.9, 0.02840),
    15: LMS(1, 45.6, 0.02839),
    18: LMS(1, 46.2, 0.02841),
    21: LMS(1, 46.7, 0.02844),
    24: LMS(1, 47.1, 0.02848),
    27: LMS(1, 47.4, 0.02853),
    30: LMS(1, 47.7, 0.02858),
    33: LMS(1, 47.9, 0.02864),
    36: LMS(1, 48.1, 0.02870),
    39: LMS(1, 48.3, 0.02876),
    42: LMS(1, 48.5, 0.02882),
    45: LMS(1, 48.6, 0.02888),
    48: LMS(1, 48.8, 0.02894),
    51: LMS(1, 48.9, 0.02900),
    54: LMS(1, 49.0, 0.02906),
    57: LMS(1, 49.1, 0.02912),
    60: LMS(1, 49.2, 0.02918),
}

_TABLES: Dict[Tuple[GrowthMeasurement, Gender], Dict[int, LMS]] = {
    (GrowthMeasurement.HEIGHT, Gender.MALE): HEIGHT_FOR_AGE_BOYS,
    (GrowthMeasurement.HEIGHT, Gender.FEMALE): HEIGHT_FOR_AGE_GIRLS,
    (GrowthMeasurement.WEIGHT, Gender.MALE): WEIGHT_FOR_AGE_BOYS,
    (GrowthMeasurement.WEIGHT, Gender.FEMALE): WEIGHT_FOR_AGE_GIRLS,
    (GrowthMeasurement.BMI, Gender.MALE): BMI_FOR_AGE_BOYS,
    (GrowthMeasurement.BMI, Gender.FEMALE): BMI_FOR_AGE_GIRLS,
    (GrowthMeasurement.HEAD_CIRCUMFERENCE, Gender.MALE): HEAD_CIRC_FOR_AGE_BOYS,
    (GrowthMeasurement.HEAD_CIRCUMFERENCE, Gender.FEMALE): HEAD_CIRC_FOR_AGE_GIRLS,
}

BAND_Z_SCORES = {
    "p3": -1.88079,
    "p15": -1.03643,
    "p50": 0.0,
    "p85": 1.03643,
    "p97": 1.88079,
}

_NORMAL = NormalDist()


def get_lms_params(age_months: float, gender: Gender | str, measurement: GrowthMeasurement | str) -> LMS:
    table = _TABLES[(GrowthMeasurement(measurement), Gender(gender))]
    age = max(0.0, min(float(MAX_AGE_MONTHS), float(age_months)))
    if age.is_integer() and int(age) in table:
        return table[int(age)]

    ages = sorted(table)
    lower, upper = ages[0], ages[-1]
    for left, right in zip(ages, ages[1:]):
        if left <= age <= right:
            lower, upper = left, right
            break
    low, high = table[lower], table[upper]
    ratio = (age - lower) / (upper - lower)
    return LMS(
        low.L + ratio * (high.L - low.L),
        low.M + ratio * (high.M - low.M),
        low.S + ratio * (high.S - low.S),
    )


def z_score(value: float, params: LMS) -> float:
    if params.L == 0:
        return math.log(value / params.M) / params.S
    return ((value / params.M) ** params.L - 1) / (params.L * params.S)


def value_from_z_score(z: float, params: LMS) -> float:
    if params.L == 0:
        return params.M * math.exp(params.S * z)
    return params.M * (1 + params.L * params.S * z) ** (1 / params.L)


def calculate_percentile(
    value: float,
    age_months: float,
    gender: Gender | str,
    measurement: GrowthMeasurement | str,
) -> int:
    params = get_lms_params(age_months, gender, measurement)
    percentile = _NORMAL.cdf(z_score(value, params)) * 100
    return max(0, min(100, int(math.floor(percentile + 0.5))))


def get_percentile_bands(
    age_months: float,
    gender: Gender | str,
    measurement: GrowthMeasurement | str,
) -> Dict[str, float]:
    params = get_lms_params(age_months, gender, measurement)
    return {name: value_from_z_score(z, params) for name, z in BAND_Z_SCORES.items()}


def generate_growth_chart_data(
    points: Iterable[Tuple[float, float]],
    gender: Gender | str,
    measurement: GrowthMeasurement | str,
    max_age_months: int = MAX_AGE_MONTHS,
) -> List[ChartPoint]:
    """Build one chart point per month with percentile bands.

    ``points`` are ``(age_months, value)`` pairs; a child value is attached to
    the month its age rounds to, later points overwriting earlier ones.
    """
    by_month: Dict[int, float] = {}
    for age, value in points:
        by_month[int(math.floor(age + 0.5))] = value

    chart: List[ChartPoint] = []
    for month in range(0, max_age_months + 1):
        bands = get_percentile_bands(month, gender, measurement)
        chart.append(ChartPoint(age_months=month, value=by_month.get(month), **bands))
    return chart


def get_percentile_status(percentile: float) -> Tuple[StatusLevel, str]:
    if percentile < 3:
        return StatusLevel.DANGER, "Very low"
    if percentile < 15:
        return StatusLevel.WARNING, "Low"
    if percentile <= 85:
        return StatusLevel.NORMAL, "Normal"
    if percentile <= 97:
        return StatusLevel.WARNING, "High"
    return StatusLevel.DANGER, "Very high"


def calculate_age_in_months(birth_date: date, on: Optional[date] = None) -> int:
    on = on or date.today()
    months = (on.year - birth_date.year) * 12 + (on.month - birth_date.month)
    if on.day < birth_date.day:
        months -= 1
    return max(0, months)


COMMON_MILESTONES: Dict[MilestoneType, List[Tuple[str, int]]] = {
    MilestoneType.MOTOR: [
        ("Holds head up", 2),
        ("Rolls over", 4),
        ("Sits without support", 6),
        ("Crawls", 8),
        ("Pulls to stand", 9),
        ("First steps", 12),
        ("Walks alone", 14),
        ("Runs", 18),
        ("Climbs stairs", 24),
        ("Jumps", 30),
    ],
    MilestoneType.LANGUAGE: [
        ("Babbles", 4),
        ("First word", 12),
        ("Says 10 words", 18),
        ("Two-word phrases", 24),
        ("Full sentences", 36),
        ("Tells stories", 48),
    ],
    MilestoneType.SOCIAL: [
        ("Social smile", 2),
        ("Laughs", 4),
        ("Recognizes strangers", 6),
        ("Waves bye-bye", 9),
        ("Plays peekaboo", 10),
        ("Plays with others", 24),
        ("Shares toys", 36),
    ],
    MilestoneType.COGNITIVE: [
        ("Tracks objects with eyes", 2),
        ("Reaches for objects", 4),
        ("Object permanence", 8),
        ("Points at objects", 12),
        ("Pretend play", 18),
        ("Knows colors", 30),
        ("Counts to ten", 36),
    ],
}
