"""Offset <-> line/character mapping over snapshot text."""

from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass, field

from loadbench.invariants import never

UTF8 = "utf-8"
UTF16 = "utf-16"
UTF32 = "utf-32"


@dataclass(frozen=True)
class LineAndCharacter:
    """Zero-based line and character of a text offset."""

    line: int
    character: int


@dataclass
class LineMap:
    """Start offsets of every line in a text that only grows at its end.

    Characters are counted in code points. ``\\r\\n``, ``\\r`` and ``\\n`` all
    end a line.
    """

    text: str = ""
    line_starts: list[int] = field(default_factory=lambda: [0])

    @classmethod
    def from_text(cls, text: str) -> LineMap:
        line_map = cls()
        line_map.extend(text, 0)
        return line_map

    def extend(self, text: str, span_start: int) -> None:
        """Rescan ``text`` from ``span_start``, the length of the previous text.

        Line starts before ``span_start`` are kept. A trailing ``\\r`` of the
        previous text may become half of a ``\\r\\n`` pair, so the scan backs
        up one character in that case.
        """
        if span_start > len(text) or span_start > len(self.text):
            never("line map extension past the known text", span_start=span_start)
        scan_from = span_start
        if scan_from > 0 and self.text[scan_from - 1] == "\r":
            scan_from -= 1
            if self.line_starts[-1] == span_start:
                self.line_starts.pop()
        self.line_starts = [start for start in self.line_starts if start <= scan_from]
        index = scan_from
        length = len(text)
        while index < length:
            char = text[index]
            if char == "\n":
                self.line_starts.append(index + 1)
            elif char == "\r":
                if index + 1 < length and text[index + 1] == "\n":
                    index += 1
                self.line_starts.append(index + 1)
            index += 1
        self.text = text

    @property
    def line_count(self) -> int:
        return len(self.line_starts)

    def position_of(self, offset: int) -> LineAndCharacter:
        if offset < 0 or offset > len(self.text):
            never("offset outside text", offset=offset, length=len(self.text))
        line = bisect_right(self.line_starts, offset) - 1
        return LineAndCharacter(line=line, character=offset - self.line_starts[line])

    def offset_of(self, line: int, character: int) -> int:
        if line < 0:
            return 0
        if line >= len(self.line_starts):
            return len(self.text)
        return min(self.line_starts[line] + max(0, character), len(self.text))

    def encoded_position(self, offset: int, encoding: str) -> LineAndCharacter:
        """Position of ``offset`` with the character counted in ``encoding`` units."""
        position = self.position_of(offset)
        segment = self.text[offset - position.character : offset]
        return LineAndCharacter(
            line=position.line, character=encoded_length(segment, encoding)
        )

    def offset_of_encoded(self, line: int, units: int, encoding: str) -> int:
        """Inverse of ``encoded_position``; a unit count inside a character rounds up."""
        if encoding == UTF32:
            return self.offset_of(line, units)
        index = self.offset_of(line, 0)
        line_end = self.offset_of(line + 1, 0)
        spent = 0
        while index < line_end and spent < units:
            spent += encoded_length(self.text[index], encoding)
            index += 1
        return index


def encoded_length(segment: str, encoding: str) -> int:
    if encoding == UTF16:
        return len(segment.encode("utf-16-le")) // 2
    if encoding == UTF8:
        return len(segment.encode("utf-8"))
    return len(segment)
