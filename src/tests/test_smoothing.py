"""Tests for smoothing.py module."""

from smoothing import DeltaSmoother


def test_first_value_returned_unchanged():
    smoother = DeltaSmoother()

    assert smoother.value is None
    assert smoother.apply(300000.5) == 300000.5
    assert smoother.value == 300000.5


def test_subsequent_values_are_weighted_and_rounded():
    smoother = DeltaSmoother()
    smoother.apply(100)

    assert smoother.apply(200) == 120
    # 0.2 * 125 + 0.8 * 120 = 121
    assert smoother.apply(125) == 121
    # 0.2 * 1 + 0.8 * 121 = 97.0
    assert smoother.apply(1) == 97


def test_zero_is_a_real_value_not_unset():
    smoother = DeltaSmoother()
    smoother.apply(0)

    assert smoother.apply(100) == 20


def test_custom_alpha():
    smoother = DeltaSmoother()
    smoother.apply(1000)

    assert smoother.apply(0, alpha=0.5) == 500
