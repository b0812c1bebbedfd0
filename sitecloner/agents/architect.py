"""Plan synthesis: extraction snapshot plus rolling summary to a component plan."""

import logging
from dataclasses import dataclass
from typing import Optional

from ..errors import StageContractError
from ..prompts import render
from ..scout.models import ExtractionSnapshot
from ..utils.parsing import parse_model
from .base_agent import BaseAgent
from .chunker import ChunkingResult, ContextChunker
from .models import ComponentPlan

logger = logging.getLogger(__name__)


@dataclass
class PlanOutcome:
    plan: ComponentPlan
    chunking: ChunkingResult


def reconcile_deviation_notes(plan: ComponentPlan) -> ComponentPlan:
    """Ensure every user-vs-reality conflict is reflected in the deviation notes."""
    notes = list(plan.deviation_notes)
    for conflict in plan.conflicts:
        if conflict.type != "user-vs-reality":
            continue
        if any(conflict.description in note for note in notes):
            continue
        note = conflict.description
        if conflict.decision:
            note += f". Decision: {conflict.decision}"
        if conflict.reasoning:
            note += f". Reasoning: {conflict.reasoning}"
        notes.append(note)
    if len(notes) == len(plan.deviation_notes):
        return plan
    return plan.model_copy(update={"deviation_notes": notes})


class PlanSynthesizer(BaseAgent):
    """
    Turns a snapshot into a ComponentPlan.

    Live extracted data outranks user instructions; contradictions are
    recorded as conflicts and deviation notes rather than followed.
    """

    step_name = "architect"

    def __init__(self, gateway, chunker: ContextChunker, temperature: float = 0.3, max_tokens: int = 8192):
        super().__init__(gateway, temperature=temperature, max_tokens=max_tokens)
        self.chunker = chunker

    async def execute(
        self,
        snapshot: ExtractionSnapshot,
        instructions: Optional[str] = None,
    ) -> PlanOutcome:
        chunking = await self.chunker.execute(snapshot, instructions)

        stats = chunking.stats
        unsent = chunking.unsent_chunks
        prompt = render(
            "architect_plan",
            summary=chunking.summary,
            total_styles=stats["totalStyles"],
            total_layout=stats["totalLayout"],
            total_animations=stats["totalAnimations"],
            total_assets=stats["totalAssets"],
            dom_nodes=stats["domNodes"],
            processed_chunks=chunking.processed_chunks,
            total_chunks=chunking.total_chunks,
            unsent_note=(
                f" ({unsent} chunks beyond the analysis limit are represented only by these counts)"
                if unsent
                else ""
            ),
            instructions=instructions or "None - clone exactly as-is",
        )

        logger.info("[ARCHITECT] Requesting component plan (%d chunks analyzed)", chunking.processed_chunks)
        text = await self._ask(prompt)
        plan = parse_model(text, ComponentPlan)
        if not plan.components:
            raise StageContractError("Component plan contains no components")

        plan = reconcile_deviation_notes(plan)
        logger.info(
            "[ARCHITECT] Plan created: %d components, %d conflicts",
            len(plan.components),
            len(plan.conflicts),
        )
        return PlanOutcome(plan=plan, chunking=chunking)
