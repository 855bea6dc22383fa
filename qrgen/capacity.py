"""Capacity estimator: content length + ECC level -> QR version and grid size.

Advisory metadata only. The table is the alphanumeric-mode capacity of each
version; byte-mode content (most URLs and JSON) holds less per version, so
the real symbol chosen by the renderer can be larger than the estimate.
"""

from dataclasses import dataclass

from qrgen.errors import InvalidFormat

MIN_VERSION = 1
MAX_VERSION = 40

# Alphanumeric capacity (characters) for versions 1..40
ALPHANUMERIC_CAPACITY = {
    "L": (25, 47, 77, 114, 154, 195, 224, 279, 335, 395, 468, 535, 619, 667, 758, 854, 938, 1046,
          1153, 1249, 1352, 1460, 1588, 1704, 1853, 1990, 2132, 2223, 2369, 2520, 2677, 2840, 3009,
          3183, 3351, 3537, 3729, 3927, 4087, 4296),
    "M": (20, 38, 61, 90, 122, 154, 178, 221, 262, 311, 366, 419, 483, 528, 600, 656, 734, 816,
          909, 970, 1035, 1134, 1248, 1326, 1451, 1542, 1637, 1732, 1839, 1994, 2113, 2238, 2369,
          2506, 2632, 2780, 2894, 3054, 3220, 3391),
    "Q": (16, 29, 47, 67, 87, 108, 125, 157, 189, 221, 259, 296, 352, 376, 426, 470, 531, 574,
          644, 702, 742, 823, 890, 963, 1041, 1094, 1172, 1263, 1322, 1429, 1499, 1618, 1700, 1787,
          1867, 1966, 2071, 2181, 2298, 2420),
    "H": (10, 20, 35, 50, 64, 84, 93, 122, 143, 174, 200, 227, 259, 283, 321, 365, 408, 452,
          493, 557, 587, 640, 672, 744, 779, 864, 910, 958, 1016, 1080, 1150, 1226, 1307, 1394,
          1431, 1530, 1591, 1658, 1774, 1852),
}


@dataclass(frozen=True)
class CapacityEstimate:
    version: int
    modules: int
    capacity: int   # alphanumeric capacity of that version at the ECC level
    length: int

    @property
    def fits(self) -> bool:
        return self.length <= self.capacity


def _table(ecc: str) -> tuple[int, ...]:
    try:
        return ALPHANUMERIC_CAPACITY[ecc.upper()]
    except (KeyError, AttributeError):
        raise InvalidFormat(f"invalid error correction level {ecc!r}") from None


def estimate_version(length: int, ecc: str = "M") -> int:
    """Smallest version whose capacity holds ``length`` characters, clamped to 40."""
    if length < 0:
        raise ValueError("length must be non-negative")
    for version, capacity in enumerate(_table(ecc), start=MIN_VERSION):
        if length <= capacity:
            return version
    return MAX_VERSION


def modules(version: int) -> int:
    """Modules per side: 21 for version 1, +4 per version, 177 for version 40."""
    if not MIN_VERSION <= version <= MAX_VERSION:
        raise ValueError(f"QR version must be between {MIN_VERSION} and {MAX_VERSION}, got {version}")
    return 21 + (version - 1) * 4


def estimate(content: str, ecc: str = "M") -> CapacityEstimate:
    version = estimate_version(len(content), ecc)
    return CapacityEstimate(
        version=version,
        modules=modules(version),
        capacity=_table(ecc)[version - 1],
        length=len(content),
    )
