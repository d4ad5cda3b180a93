"""
Text model — positions, ranges and in-memory documents.

Lines and characters are 0-indexed. Ranges are half-open in spirit but,
like editor ranges, two ranges that only touch still intersect in an
empty range.
"""
from dataclasses import dataclass, field


@dataclass(frozen=True, order=True)
class Position:
    """A line/character location inside a document"""
    line: int
    character: int = 0


@dataclass(frozen=True)
class Range:
    """A span between two positions, always normalised so start <= end"""
    start: Position
    end: Position

    def __post_init__(self):
        if self.end < self.start:
            start, end = self.end, self.start
            object.__setattr__(self, "start", start)
            object.__setattr__(self, "end", end)

    @classmethod
    def of(cls, start_line: int, start_char: int, end_line: int, end_char: int) -> "Range":
        return cls(Position(start_line, start_char), Position(end_line, end_char))

    @property
    def is_empty(self) -> bool:
        return self.start == self.end

    def contains(self, other: "Position | Range") -> bool:
        """True if a position (or a whole range) lies inside this range, edges included"""
        if isinstance(other, Range):
            return self.contains(other.start) and self.contains(other.end)
        return self.start <= other <= self.end

    def intersection(self, other: "Range") -> "Range | None":
        start = max(self.start, other.start)
        end = min(self.end, other.end)
        if start > end:
            return None
        return Range(start, end)

    def intersects(self, other: "Range") -> bool:
        return self.intersection(other) is not None

    def to_dict(self) -> dict:
        return {
            "start": {"line": self.start.line, "character": self.start.character},
            "end": {"line": self.end.line, "character": self.end.character},
        }


ZERO_RANGE = Range.of(0, 0, 0, 0)


@dataclass
class TextDocument:
    """
    An editor buffer (or a file read from disk) with line/offset helpers.

    `version` increases every time the owning registry changes the text;
    documents read straight from disk carry version 0.
    """
    path: str
    text: str
    version: int = 0
    _raw_lines: list[str] = field(default_factory=list, init=False, repr=False, compare=False)

    def __post_init__(self):
        self._raw_lines = self.text.split("\n")

    @property
    def line_count(self) -> int:
        return len(self._raw_lines)

    def line_at(self, line: int) -> str:
        """Line text without its terminator"""
        return self._raw_lines[line].rstrip("\r")

    @property
    def lines(self) -> list[str]:
        return [line.rstrip("\r") for line in self._raw_lines]

    def full_range(self) -> Range:
        last = self.line_count - 1
        return Range.of(0, 0, last, len(self.line_at(last)))

    def validate_position(self, position: Position) -> Position:
        """Clamp a position into the document"""
        if position.line < 0:
            return Position(0, 0)
        if position.line >= self.line_count:
            last = self.line_count - 1
            return Position(last, len(self.line_at(last)))
        line_length = len(self.line_at(position.line))
        return Position(position.line, max(0, min(position.character, line_length)))

    def validate_range(self, rng: Range) -> Range:
        return Range(self.validate_position(rng.start), self.validate_position(rng.end))

    def offset_at(self, position: Position) -> int:
        position = self.validate_position(position)
        offset = sum(len(raw) + 1 for raw in self._raw_lines[:position.line])
        return offset + position.character

    def position_at(self, offset: int) -> Position:
        offset = max(0, min(offset, len(self.text)))
        line = 0
        for raw in self._raw_lines:
            if offset <= len(raw):
                return self.validate_position(Position(line, offset))
            offset -= len(raw) + 1
            line += 1
        return self.full_range().end

    def get_text(self, rng: Range | None = None) -> str:
        if rng is None:
            return self.text
        start = self.offset_at(rng.start)
        end = self.offset_at(rng.end)
        return self.text[start:end]
