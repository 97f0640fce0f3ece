from decimal import Decimal

import pytest

from dyn import (
    of, list_of, map_of, set_of, array_of,
    UnsupportedOperation, DivisionByZero, OutOfRange, MalformedInput, ConversionError,
)

# --- Arithmetic ---

def test_basic_arithmetic():
    assert of(3).add(of(4)).get() == 7
    assert of(10).subtract(of(3)).get() == 7
    assert of(10).multiply(of(3)).get() == 30


def test_arithmetic_results_are_decimal():
    res = of(3).add(4).get()
    assert isinstance(res, Decimal)
    assert res == Decimal(7)


def test_divide_rounds_to_ten_places():
    res = of(10).divide(of(3)).get()
    assert res == Decimal("3.3333333333")
    assert str(res) == "3.3333333333"
    assert of(10).divide(3).as_float() == pytest.approx(3.3333333333)


@pytest.mark.parametrize("a,b,expected", [
    (2, 3, "0.6666666667"),
    (-2, 3, "-0.6666666667"),
    (1, 8, "0.125"),
    # exact tie at the eleventh digit rounds away from zero
    (1, 20000000000, "0.0000000001"),
    (-1, 20000000000, "-0.0000000001"),
    (Decimal("7.5"), Decimal("2.5"), "3"),
])
def test_divide_half_up(a, b, expected):
    assert of(a).divide(b).get() == Decimal(expected)


@pytest.mark.parametrize("x", [0, 1, -5, 2.5, Decimal("3.1")])
@pytest.mark.parametrize("zero", [0, 0.0, Decimal("0.000")])
def test_divide_by_zero(x, zero):
    with pytest.raises(ArithmeticError):
        of(x).divide(of(zero))
    with pytest.raises(DivisionByZero):
        of(x).divide(zero)


@pytest.mark.parametrize("op", ["add", "subtract", "multiply", "divide", "bitwise_and", "bitwise_or", "is_greater_than"])
@pytest.mark.parametrize("bad", [float("inf"), float("-inf"), float("nan"), Decimal("Infinity")])
def test_non_finite_operands_are_unsupported(op, bad):
    with pytest.raises(UnsupportedOperation) as ei:
        getattr(of(bad), op)(of(2))
    assert ei.value.capability == "finite numbers"
    with pytest.raises(UnsupportedOperation):
        getattr(of(2), op)(bad)
    assert of(bad).attempt(op, 2).kind == "UnsupportedOperation"


def test_float_operands_do_not_drift():
    assert of(0.1).add(0.2).get() == Decimal("0.3")
    assert of(1.1).multiply(3).get() == Decimal("3.3")


def test_large_values_stay_exact():
    big = 10 ** 40 + 1
    assert of(big).add(1).get() == Decimal(10 ** 40 + 2)
    assert of(big).multiply(big).get() == Decimal(big * big)


def test_add_concatenates_strings():
    assert of("Hello ").add(of("World")).get() == "Hello World"
    assert of("a").add("b").get() == "ab"


def test_add_prefers_numbers_when_both_capable():
    a = of("x").set(1)
    b = of("y").set(2)
    assert a.add(b).get() == 3


def test_add_mismatch_is_unsupported():
    with pytest.raises(UnsupportedOperation) as ei:
        of("a").add(1)
    assert ei.value.capability == "numbers or strings"
    assert isinstance(ei.value, TypeError)


@pytest.mark.parametrize("op", ["subtract", "multiply", "divide", "bitwise_and", "bitwise_or"])
def test_numeric_ops_require_numbers(op):
    with pytest.raises(UnsupportedOperation):
        getattr(of("a"), op)(of(1))


def test_bool_operands_are_not_numbers():
    with pytest.raises(UnsupportedOperation):
        of(True).add(1)


def test_bitwise_ops_truncate_to_int():
    assert of(12).bitwise_and(10).get() == 8
    assert of(12).bitwise_or(of(10)).get() == 14
    assert of(12.9).bitwise_and(10).get() == 8
    assert isinstance(of(12).bitwise_or(1).get(), int)


def test_operations_read_any_number_representation():
    d = of("ten").set([1])
    d.set(10)
    d.set("again")
    assert d.add(5).get() == 15


# --- Strings ---

def test_string_operations():
    text = of("Hello World")
    assert text.concat(of("!")).get() == "Hello World!"
    assert text.substring(6, 11).get() == "World"
    assert text.substring(6).get() == "World"
    assert text.to_upper_case().get() == "HELLO WORLD"
    assert text.to_lower_case().get() == "hello world"
    assert text.get() == "Hello World"


@pytest.mark.parametrize("begin,end", [(-1, 3), (0, 12), (5, 4)])
def test_substring_out_of_range(begin, end):
    with pytest.raises(OutOfRange) as ei:
        of("Hello World").substring(begin, end)
    assert ei.value.length == 11
    assert isinstance(ei.value, IndexError)


def test_substring_full_and_empty_ranges():
    assert of("abc").substring(0, 3).get() == "abc"
    assert of("abc").substring(3, 3).get() == ""


def test_matches_is_whole_string():
    text = of("Hello World")
    assert text.matches(r"Hello.*")
    assert not text.matches("World")


def test_replace_all():
    assert of("Hello World").replace_all("o", "0").get() == "Hell0 W0rld"
    assert of("a1b22c").replace_all(r"\d+", "#").get() == "a#b#c"


def test_bad_pattern_is_malformed_input():
    with pytest.raises(MalformedInput):
        of("x").matches("(")
    with pytest.raises(MalformedInput):
        of("x").replace_all("[", "")


@pytest.mark.parametrize("call", [
    lambda d: d.concat(of("x")),
    lambda d: d.substring(0, 1),
    lambda d: d.to_upper_case(),
    lambda d: d.to_lower_case(),
    lambda d: d.matches("x"),
    lambda d: d.replace_all("x", "y"),
])
def test_string_ops_require_string(call):
    with pytest.raises(UnsupportedOperation):
        call(of(42))


def test_concat_requires_string_argument():
    with pytest.raises(UnsupportedOperation):
        of("x").concat(1)


# --- Collections ---

def test_list_add_and_remove():
    lst = list_of(1, 2, 3)
    assert lst.add_element(4) is lst
    assert lst.as_list(int) == [1, 2, 3, 4]
    lst.remove_element(of(2))
    assert lst.as_list(int) == [1, 3, 4]


def test_remove_absent_element_is_a_noop():
    lst = list_of(1)
    lst.remove_element(99)
    assert lst.get() == [1]


def test_add_element_unwraps_containers():
    lst = list_of()
    lst.add_element(of("x"))
    lst.add_element(["raw"])
    assert lst.get() == ["x", ["raw"]]


def test_put_key_value_stores_raw_values():
    m = map_of("a", 1)
    m.put_key_value("b", of(2))
    m.put_key_value("c", [3])
    assert m.get() == {"a": 1, "b": 2, "c": [3]}
    assert m.get_json("b").get() == 2
    assert m.as_map(str) == {"a": 1, "b": 2, "c": [3]}


def test_get_json_missing_key_wraps_none():
    assert map_of("a", 1).get_json("zzz").primary_value is None


def test_size_and_is_empty():
    assert list_of(1, 2).size() == 2
    assert map_of("a", 1).size() == 1
    assert set_of(1, 2, 3).size() == 3
    assert array_of(1).size() == 1
    assert of("abc").size() == 3
    assert not list_of(1).is_empty()
    assert map_of().is_empty()
    assert set_of().is_empty()


def test_clear_list_and_map():
    lst = list_of(1, 2)
    assert lst.clear() is lst
    assert lst.is_empty()
    m = map_of("a", 1)
    m.clear()
    assert m.is_empty()


@pytest.mark.parametrize("call", [
    lambda d: d.add_element(1),
    lambda d: d.remove_element(1),
    lambda d: d.put_key_value("k", 1),
    lambda d: d.clear(),
    lambda d: d.size(),
    lambda d: d.is_empty(),
    lambda d: d.get_json("k"),
])
def test_collection_ops_require_capability(call):
    with pytest.raises(UnsupportedOperation):
        call(of(5))


def test_is_empty_does_not_apply_to_strings():
    with pytest.raises(UnsupportedOperation):
        of("abc").is_empty()


def test_as_list_checks_element_type():
    with pytest.raises(ConversionError):
        list_of(1, "x").as_list(int)


def test_as_map_checks_value_type():
    with pytest.raises(ConversionError):
        map_of("a", 1).as_map(str, str)


# --- Comparison ---

def test_comparisons():
    assert of(5).is_greater_than(3)
    assert not of(3).is_greater_than(of(5))
    assert of(2.5).is_less_than(of(3))
    assert of("x").is_equal_to("x")
    assert of("x").is_equal_to(of("x"))
    assert not of(1).is_equal_to("1")


def test_numeric_comparison_requires_numbers():
    with pytest.raises(UnsupportedOperation):
        of("a").is_greater_than(1)
