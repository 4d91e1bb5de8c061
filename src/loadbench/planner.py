"""Where to cut the next chunk of a large file.

A closing brace at the start of a line is taken as the end of a top-level
block: re-parsing after a cut there is least likely to change the meaning of
the code before it. The cut moves on to the end of that brace's line so
trailing tokens on the same line (``})();``) stay with their block.
"""

from __future__ import annotations

from dataclasses import dataclass

from loadbench.invariants import never

BLOCK_END = "\n}"
SIZE_CAP_FACTOR = 4


@dataclass(frozen=True)
class ChunkPlan:
    start: int
    end: int
    forced: bool = False

    @property
    def length(self) -> int:
        return self.end - self.start


def plan_chunk(text: str, chunk_start: int, batch_size: int) -> ChunkPlan:
    text_length = len(text)
    if batch_size <= 0:
        never("invalid batch size", batch_size=batch_size)
    if chunk_start < 0 or chunk_start >= text_length:
        never("chunk start outside text", chunk_start=chunk_start, length=text_length)

    # Halving the remainder shrinks chunks towards the end of the file.
    default_end = chunk_start + min(batch_size, (text_length - chunk_start) // 2)
    block_end = text.find(BLOCK_END, default_end)
    line_end = -1 if block_end < 0 else text.find("\n", block_end + len(BLOCK_END))
    end = line_end if line_end >= 0 else text_length

    forced = False
    size_cap = batch_size * SIZE_CAP_FACTOR
    if end - chunk_start > size_cap:
        forced = True
        if block_end >= 0 and block_end - chunk_start < size_cap:
            end = block_end + len(BLOCK_END)
        else:
            brace = text.find("}", chunk_start + batch_size)
            if brace < 0 or brace - chunk_start > size_cap:
                end = chunk_start + batch_size
            else:
                end = brace

    if not chunk_start < end <= text_length:
        never("chunk plan makes no progress", start=chunk_start, end=end, length=text_length)
    return ChunkPlan(start=chunk_start, end=end, forced=forced)


def plan_all_chunks(text: str, batch_size: int) -> list[ChunkPlan]:
    """Plan every chunk of ``text`` in order, as the load loop would."""
    plans: list[ChunkPlan] = []
    start = 0
    while start < len(text):
        plan = plan_chunk(text, start, batch_size)
        plans.append(plan)
        start = plan.end
    return plans
