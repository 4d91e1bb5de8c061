"""Source context quoted under each chunk line of a large file."""

from __future__ import annotations

from dataclasses import dataclass, replace
import re

from loadbench.host import AnalysisSession

# Lines end at \n, \r or \r\n.
_MEANINGFUL_LINE_RE = re.compile(
    r"(?:(?<=[\r\n])|\A)[ \t\f\v]*(\S[^\r\n]*?)[ \t\f\v]*(?=[\r\n]|\Z)"
)


@dataclass(frozen=True)
class ChunkContext:
    first_line: str
    last_line: str
    first_offset: int
    last_offset: int
    first_line_number: int | None = None
    last_line_number: int | None = None


def extract_chunk_context(
    chunk: str, chunk_start: int, quote_length: int
) -> ChunkContext | None:
    """Quote the first and last non-blank lines of ``chunk``.

    Offsets are absolute: ``first_offset`` is the first quoted character,
    ``last_offset`` the last one. Returns ``None`` for a blank chunk.
    """
    first = _MEANINGFUL_LINE_RE.search(chunk)
    if first is None:
        return None
    last = first
    for last in _MEANINGFUL_LINE_RE.finditer(chunk, first.start()):
        pass
    first_line = first.group(1)[:quote_length]
    last_line = last.group(1)[-quote_length:] if quote_length > 0 else ""
    if not first_line or not last_line:
        return None
    return ChunkContext(
        first_line=first_line,
        last_line=last_line,
        first_offset=chunk_start + first.start(1),
        last_offset=chunk_start + last.end(1) - 1,
    )


def resolve_line_numbers(
    context: ChunkContext, session: AnalysisSession, path: str
) -> ChunkContext:
    program = session.get_program()
    source_file = program.get_source_file(path) if program is not None else None
    if source_file is None:
        return context
    first = source_file.get_line_and_character_of_position(context.first_offset)
    last = source_file.get_line_and_character_of_position(context.last_offset)
    return replace(
        context,
        first_line_number=first.line + 1,
        last_line_number=last.line + 1,
    )
