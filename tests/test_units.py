"""Tests for weight unit inference.

The heuristic has a documented blind spot; the tests pin that behaviour
rather than an idealised conversion.
"""

import pytest

from integrations.domain.units import (
    KG_TO_LB,
    STONE_TO_LB,
    WeightUnit,
    infer_weight_unit,
    to_pounds,
)


class TestInferWeightUnit:
    @pytest.mark.parametrize("value", [50, 50.0, 80.5, 120, 199.9, 200])
    def test_kilogram_range_is_inclusive(self, value):
        assert infer_weight_unit(value) is WeightUnit.KILOGRAMS

    @pytest.mark.parametrize("value", [8, 12.5, 25])
    def test_stone_range(self, value):
        assert infer_weight_unit(value) is WeightUnit.STONES

    @pytest.mark.parametrize("value", [0.5, 7.9, 25.1, 49.99])
    def test_below_kilogram_range_is_decimal_stones(self, value):
        assert infer_weight_unit(value) is WeightUnit.DECIMAL_STONES

    @pytest.mark.parametrize("value", [200.1, 250, 330])
    def test_above_kilogram_range_is_pounds(self, value):
        assert infer_weight_unit(value) is WeightUnit.POUNDS


class TestToPounds:
    def test_kilograms(self):
        assert to_pounds(80) == pytest.approx(80 * KG_TO_LB)
        assert to_pounds(80) == pytest.approx(176.3696)

    def test_stones(self):
        assert to_pounds(12) == 12 * STONE_TO_LB == 168

    def test_decimal_stones(self):
        assert to_pounds(30) == pytest.approx(420)

    def test_pounds_pass_through(self):
        assert to_pounds(250) == 250

    def test_boundaries(self):
        assert to_pounds(50) == pytest.approx(50 * KG_TO_LB)
        assert to_pounds(200) == pytest.approx(200 * KG_TO_LB)

    def test_light_adult_in_kilograms_is_read_as_stones(self):
        """Known blind spot: 45 kg is outside the kilogram range."""
        assert infer_weight_unit(45) is WeightUnit.DECIMAL_STONES
        assert to_pounds(45) == pytest.approx(630)

    def test_pounds_inside_kilogram_range_are_converted(self):
        """Known blind spot: 150 lb looks like kilograms."""
        assert to_pounds(150) == pytest.approx(150 * KG_TO_LB)
