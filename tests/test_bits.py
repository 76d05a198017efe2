import pytest

from treebeard.bits import binary_reverse, to_int32_list, to_int_list


def test_binary_reverse():
    assert binary_reverse(11, 4) == 13


@pytest.mark.parametrize("bits", [1, 3, 5, 8])
def test_binary_reverse_is_an_involution(bits):
    for x in range(1 << bits):
        assert binary_reverse(binary_reverse(x, bits), bits) == x


def test_binary_reverse_ignores_high_bits():
    assert binary_reverse(11 | (1 << 10), 4) == binary_reverse(11, 4)


def test_binary_reverse_zero_bits():
    assert binary_reverse(12345, 0) == 0


def test_convert_int_list_to_int32_list():
    ints = [1, 2, 3, 4, 5]
    converted = to_int32_list(ints)
    assert len(converted) == len(ints)
    assert converted == ints


def test_convert_int32_list_to_int_list():
    int32s = [1, 2, 3, 4, 5]
    converted = to_int_list(int32s)
    assert len(converted) == len(int32s)
    assert converted == int32s


def test_int32_conversion_wraps_like_a_truncating_cast():
    assert to_int32_list([2**31, -(2**31) - 1, 2**32]) == [-(2**31), 2**31 - 1, 0]


def test_int32_conversion_accepts_generators():
    assert to_int32_list(x for x in (7, -7)) == [7, -7]