"""Chunked context accumulation for oversized extraction snapshots.

The snapshot's style, layout and animation lists can be far larger than a
single model call accepts. The chunker sends a shallow overview first, then
walks fixed-size chunks of each list, carrying only a rolling summary between
calls. Every ``compact_every`` chunks, and after the last one, the transcript
is compacted into a new summary, so context stays bounded by one summary plus
one chunk no matter how many chunks there are.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from ..errors import CandidatesExhaustedError
from ..prompts import render
from ..scout.models import DomNode, ExtractionSnapshot
from .base_agent import BaseAgent

logger = logging.getLogger(__name__)

OVERVIEW_CHILDREN = 10
OVERVIEW_GRANDCHILDREN = 3
DEFAULT_INSTRUCTIONS = "Clone the website accurately"


@dataclass
class Chunk:
    """A slice of one of the snapshot's flat lists."""

    kind: str  # "styles" | "layout" | "animations"
    items: list[dict]
    index: int
    total: int


@dataclass
class ChunkingResult:
    """Rolling summary handed to plan synthesis, plus accounting."""

    summary: str
    total_chunks: int = 0
    processed_chunks: int = 0
    skipped_chunks: int = 0
    split_chunks: int = 0
    calls: int = 0
    stats: dict[str, int] = field(default_factory=dict)

    @property
    def unsent_chunks(self) -> int:
        return max(self.total_chunks - self.processed_chunks - self.skipped_chunks, 0)


def _shallow_dom(root: DomNode) -> dict:
    children = []
    for child in root.children[:OVERVIEW_CHILDREN]:
        grandchildren = [
            g.model_copy(update={"children": []}).model_dump(by_alias=True, exclude_none=True)
            for g in child.children[:OVERVIEW_GRANDCHILDREN]
        ]
        node = child.model_dump(by_alias=True, exclude_none=True, exclude={"children"})
        node["children"] = grandchildren
        children.append(node)
    top = root.model_dump(by_alias=True, exclude_none=True, exclude={"children"})
    top["children"] = children
    return top


def snapshot_stats(snapshot: ExtractionSnapshot) -> dict[str, int]:
    return {
        "totalStyles": len(snapshot.computed_styles),
        "totalLayout": len(snapshot.layout),
        "totalAnimations": len(snapshot.animations),
        "totalAssets": len(snapshot.assets),
        "domNodes": snapshot.dom.count(),
    }


def build_overview(snapshot: ExtractionSnapshot) -> dict[str, Any]:
    """Cheap first look at the page: metadata, truncated DOM, assets and counts."""
    stats = snapshot_stats(snapshot)
    stats.pop("totalAssets")
    return {
        "url": snapshot.url,
        "meta": snapshot.meta.model_dump(by_alias=True),
        "dom": _shallow_dom(snapshot.dom),
        "assets": [a.model_dump(by_alias=True) for a in snapshot.assets],
        "stats": stats,
    }


def partition(snapshot: ExtractionSnapshot, chunk_size: int) -> list[Chunk]:
    """Split styles, layout and animations independently into fixed-size chunks."""
    if chunk_size < 1:
        raise ValueError("chunk_size must be positive")
    chunks: list[Chunk] = []
    lists = (
        ("styles", snapshot.computed_styles),
        ("layout", snapshot.layout),
        ("animations", snapshot.animations),
    )
    for kind, records in lists:
        items = [r.model_dump(by_alias=True) for r in records]
        total = (len(items) + chunk_size - 1) // chunk_size
        for i in range(total):
            chunks.append(
                Chunk(kind=kind, items=items[i * chunk_size:(i + 1) * chunk_size], index=i, total=total)
            )
    return chunks


class ContextChunker(BaseAgent):
    """
    Folds a snapshot into a rolling summary, one bounded chunk at a time.

    Args:
        gateway: Gateway for text calls
        chunk_size: Items per chunk, per list
        max_chunks: Hard ceiling on chunks sent per job
        compact_every: Compact the transcript after this many chunks
        summary_chars: Transcript prefix used as context before the first compaction
    """

    step_name = "architect"

    def __init__(
        self,
        gateway,
        chunk_size: int = 300,
        max_chunks: int = 20,
        compact_every: int = 3,
        summary_chars: int = 1500,
        temperature: float = 0.3,
    ):
        super().__init__(gateway, temperature=temperature, max_tokens=4096)
        self.chunk_size = chunk_size
        self.max_chunks = max_chunks
        self.compact_every = max(compact_every, 1)
        self.summary_chars = summary_chars

    async def execute(
        self,
        snapshot: ExtractionSnapshot,
        instructions: Optional[str] = None,
    ) -> ChunkingResult:
        chunks = partition(snapshot, self.chunk_size)
        to_process = chunks[: self.max_chunks]
        result = ChunkingResult(summary="", total_chunks=len(chunks), stats=snapshot_stats(snapshot))

        logger.info(
            "[ARCHITECT] Processing %d styles, %d layout items, %d animations in %d chunks (of %d)",
            len(snapshot.computed_styles),
            len(snapshot.layout),
            len(snapshot.animations),
            len(to_process),
            len(chunks),
        )

        transcript = await self._call(
            result,
            render(
                "architect_overview",
                overview=json.dumps(build_overview(snapshot), indent=2, default=str),
                instructions=instructions or DEFAULT_INSTRUCTIONS,
            ),
        )
        summary: Optional[str] = None

        for i, chunk in enumerate(to_process):
            context = summary if summary is not None else transcript[: self.summary_chars]
            logger.info(
                "[ARCHITECT] Chunk %d/%d: %s (%d/%d)",
                i + 1, len(to_process), chunk.kind, chunk.index + 1, chunk.total,
            )
            notes = await self._process_chunk(result, chunk, i, len(to_process), context)
            if notes:
                transcript = f"{transcript}\n\n{notes}"

            if (i + 1) % self.compact_every == 0 or i == len(to_process) - 1:
                summary = await self._call(
                    result,
                    render("architect_compact", processed=i + 1, transcript=transcript),
                )
                transcript = summary

        if len(chunks) > len(to_process):
            logger.info(
                "[ARCHITECT] Chunk ceiling reached: %d of %d chunks sent, rest summarized by stats",
                len(to_process), len(chunks),
            )

        result.summary = summary if summary is not None else transcript[: self.summary_chars]
        return result

    async def _call(self, result: ChunkingResult, prompt: str) -> str:
        result.calls += 1
        return await self._ask(prompt)

    async def _process_chunk(
        self,
        result: ChunkingResult,
        chunk: Chunk,
        position: int,
        total: int,
        context: str,
    ) -> Optional[str]:
        """Analyze one chunk; on a size rejection retry as two halves, else skip it."""
        prompt = render(
            "architect_chunk",
            number=position + 1,
            total=total,
            kind=chunk.kind,
            kind_number=chunk.index + 1,
            kind_total=chunk.total,
            data=json.dumps(chunk.items, indent=2, default=str),
            summary=context or "(none yet)",
        )
        try:
            notes = await self._call(result, prompt)
            result.processed_chunks += 1
            return notes
        except CandidatesExhaustedError as e:
            if not e.input_size_limited:
                raise

        result.split_chunks += 1
        if len(chunk.items) < 2:
            logger.warning("[ARCHITECT] Skipping chunk %d: too large and cannot be split", position + 1)
            result.skipped_chunks += 1
            return None

        logger.warning("[ARCHITECT] Chunk %d too large, splitting in half", position + 1)
        half = len(chunk.items) // 2
        parts = []
        try:
            for part, items in enumerate((chunk.items[:half], chunk.items[half:]), start=1):
                parts.append(
                    await self._call(
                        result,
                        render(
                            "architect_split_chunk",
                            part=part,
                            kind=chunk.kind,
                            data=json.dumps(items, indent=2, default=str),
                            summary=context or "(none yet)",
                        ),
                    )
                )
        except CandidatesExhaustedError:
            logger.warning("[ARCHITECT] Skipping chunk %d due to size constraints", position + 1)
            result.skipped_chunks += 1
            return None

        result.processed_chunks += 1
        return "\n".join(parts)
