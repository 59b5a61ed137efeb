import pytest

from staking.errors import ArithmeticOverflow, ValidationError
from staking.fixedpoint import MULTIPLIER, UINT256_MAX, as_uint, checked_add, checked_mul, mul_div


def test_multiplier_is_one_e36():
    assert MULTIPLIER == 10**36


@pytest.mark.parametrize("bad", [True, 1.5, "10", None])
def test_as_uint_rejects_non_integers(bad):
    with pytest.raises(ValidationError):
        as_uint(bad)


def test_as_uint_bounds():
    assert as_uint(0) == 0
    assert as_uint(UINT256_MAX) == UINT256_MAX
    with pytest.raises(ValidationError):
        as_uint(-1)
    with pytest.raises(ArithmeticOverflow):
        as_uint(UINT256_MAX + 1)


def test_mul_div_floors():
    assert mul_div(10, 1, 3) == 3
    assert mul_div(MULTIPLIER // 3, 10, MULTIPLIER) == 3
    assert mul_div(7, 3, 4) == 5


def test_overflow_checked_before_division():
    # the quotient would fit, but the intermediate product does not
    with pytest.raises(ArithmeticOverflow):
        mul_div(UINT256_MAX, 2, 4)
    with pytest.raises(ArithmeticOverflow):
        checked_mul(2**200, 2**60)
    with pytest.raises(ArithmeticOverflow):
        checked_add(UINT256_MAX, 1)


def test_mul_div_by_zero():
    with pytest.raises(ZeroDivisionError):
        mul_div(1, 1, 0)
