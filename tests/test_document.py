from rhombus.models.document import Position, Range, TextDocument, ZERO_RANGE
from rhombus.models.symbols import flatten_symbols, innermost_containing

from conftest import make_symbol


def test_range_normalises_reversed_positions():
    rng = Range(Position(5, 2), Position(1, 0))
    assert rng.start == Position(1, 0)
    assert rng.end == Position(5, 2)


def test_touching_ranges_intersect_in_empty_range():
    a = Range.of(0, 0, 2, 0)
    b = Range.of(2, 0, 4, 0)
    assert a.intersection(b) == Range.of(2, 0, 2, 0)
    assert a.intersects(b)
    assert not a.intersects(Range.of(3, 0, 4, 0))


def test_zero_range_intersects_only_ranges_touching_the_start():
    assert ZERO_RANGE.intersects(Range.of(0, 0, 10, 0))
    assert not ZERO_RANGE.intersects(Range.of(1, 0, 10, 0))


def test_contains_position_and_range():
    rng = Range.of(1, 0, 3, 5)
    assert rng.contains(Position(2, 100))
    assert rng.contains(Range.of(1, 0, 3, 5))
    assert not rng.contains(Position(3, 6))
    assert not rng.contains(Range.of(0, 0, 2, 0))


def test_offsets_round_trip_through_positions():
    document = TextDocument("/a.ts", "one\ntwo\r\nthree")
    assert document.line_count == 3
    assert document.line_at(1) == "two"
    offset = document.offset_at(Position(2, 2))
    assert document.text[offset] == "r"
    assert document.position_at(offset) == Position(2, 2)


def test_validate_range_clamps_into_document():
    document = TextDocument("/a.ts", "abc\nde")
    clamped = document.validate_range(Range.of(-3, 0, 40, 0))
    assert clamped == Range.of(0, 0, 1, 2)
    assert document.full_range() == Range.of(0, 0, 1, 2)


def test_get_text_of_range():
    document = TextDocument("/a.ts", "alpha\nbeta\ngamma\n")
    assert document.get_text(Range.of(1, 0, 2, 3)) == "beta\ngam"
    assert document.get_text() == document.text


def test_flatten_is_pre_order():
    method = make_symbol("run", "method", (1, 2), (2, 3))
    cls = make_symbol("Job", "class", (0, 0), (3, 1), children=[method])
    fn = make_symbol("main", "function", (5, 0), (6, 1))
    assert [s.name for s in flatten_symbols([cls, fn])] == ["Job", "run", "main"]


def test_innermost_containing_descends_into_children():
    method = make_symbol("run", "method", (1, 2), (2, 3))
    cls = make_symbol("Job", "class", (0, 0), (3, 1), children=[method])
    assert innermost_containing([cls], Position(2, 0)).name == "run"
    assert innermost_containing([cls], Position(3, 0)).name == "Job"
    assert innermost_containing([cls], Position(7, 0)) is None
    assert innermost_containing([cls], Range.of(1, 4, 2, 1)).name == "run"
