"""Weight unit inference.

Fitbit reports weight in the unit configured on the remote account
(kilograms, pounds or stones) and not every response shape says which.
The magnitude decides, checked in this order:

    50 <= w <= 200    kilograms       -> w * 2.20462
    8 <= w <= 25      stones          -> w * 14
    w < 50            decimal stones  -> w * 14
    otherwise         already pounds  -> w

Known blind spot: an adult under ~50 kg is read as stones (or, above
25, as decimal stones), and pound values between 50 and 200 are read as
kilograms. The ranges are kept as they are; see DESIGN.md.
"""

from enum import StrEnum

KG_TO_LB = 2.20462
STONE_TO_LB = 14

KG_RANGE = (50, 200)
STONE_RANGE = (8, 25)


class WeightUnit(StrEnum):
    KILOGRAMS = "kg"
    STONES = "st"
    DECIMAL_STONES = "st_decimal"
    POUNDS = "lb"


def infer_weight_unit(value: float) -> WeightUnit:
    if KG_RANGE[0] <= value <= KG_RANGE[1]:
        return WeightUnit.KILOGRAMS
    if STONE_RANGE[0] <= value <= STONE_RANGE[1]:
        return WeightUnit.STONES
    if value < KG_RANGE[0]:
        return WeightUnit.DECIMAL_STONES
    return WeightUnit.POUNDS


def to_pounds(value: float) -> float:
    """Convert a raw provider weight to pounds using the inferred unit."""
    unit = infer_weight_unit(value)
    if unit is WeightUnit.KILOGRAMS:
        return value * KG_TO_LB
    if unit in (WeightUnit.STONES, WeightUnit.DECIMAL_STONES):
        return value * STONE_TO_LB
    return value
