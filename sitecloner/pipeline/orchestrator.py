"""Pipeline orchestrator: drives one job from pending to a terminal state.

scout -> architect -> coder -> qa, with a bounded coder/qa retry loop. Every
transition is invariant-checked and persisted before the next stage starts.
Nothing raised inside a stage escapes ``run``/``execute``: stage errors become
a ``failed`` JobState with an error entry tagged with the stage.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from ..agents.architect import PlanSynthesizer
from ..agents.chunker import ContextChunker
from ..agents.coder import CodeGenerator
from ..agents.gateway import GatewayConfig, LiteLLMProvider, ModelGateway
from ..agents.qa import QualityValidator
from ..config.settings import settings
from ..errors import IllegalTransitionError, StructuredOutputError
from ..preview.renderer import PlaywrightScreenshotter
from ..scout.assets import AssetCache
from ..scout.extractor import PageExtractor, PlaywrightPageExtractor
from ..store.job_store import JobStateStore
from ..utils.cost_tracker import PipelineCosts
from .state import (
    CodeSucceeded,
    CodeUnparseable,
    JobState,
    JobStatus,
    PlanSucceeded,
    QAScored,
    ScoutSucceeded,
    Stage,
    StageFailed,
    StageResult,
    apply,
    begin,
    check_append_only,
    check_invariants,
    new_job_id,
)

logger = logging.getLogger(__name__)


@dataclass
class StageAgents:
    """Model-backed agents for one job, sharing that job's cost tracker."""

    architect: PlanSynthesizer
    coder: CodeGenerator
    qa: QualityValidator


AgentsFactory = Callable[[PipelineCosts], StageAgents]


def _describe(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


class PipelineOrchestrator:
    """
    Runs the clone pipeline for one job at a time per call.

    Args:
        store: Where every JobState transition is persisted
        extractor: Page extraction boundary
        agents_factory: Builds the architect/coder/qa agents for a job's cost tracker
        max_retries: Default retry budget for jobs created by ``run``
        stage_timeout: Wall-clock limit per stage in seconds (0 or None disables)
        fail_on_low_score: End as failed, not complete, when retries run out without passing
    """

    def __init__(
        self,
        store: JobStateStore,
        extractor: PageExtractor,
        agents_factory: AgentsFactory,
        max_retries: int = 3,
        stage_timeout: Optional[float] = None,
        fail_on_low_score: bool = False,
    ):
        self.store = store
        self.extractor = extractor
        self.agents_factory = agents_factory
        self.max_retries = max_retries
        self.stage_timeout = stage_timeout or None
        self.fail_on_low_score = fail_on_low_score

    async def run(
        self,
        url: str,
        instructions: Optional[str] = None,
        job_id: Optional[str] = None,
    ) -> JobState:
        """Create a pending job for ``url``, persist it, and run it to completion."""
        state = JobState.new(job_id or new_job_id(), url, instructions, self.max_retries)
        try:
            await self.store.save(state)
        except Exception as e:
            logger.error("[PIPELINE] Could not persist new job %s: %s", state.job_id, e)
            return await self._fail_safely(state, e)
        return await self.execute(state)

    async def execute(self, state: JobState) -> JobState:
        """Drive an already-persisted pending job to a terminal state. Never raises."""
        costs = PipelineCosts()
        extra = {"job_id": state.job_id, "stage": "-"}
        start = time.time()

        logger.info("=" * 60, extra=extra)
        logger.info("[PIPELINE] Cloning %s (max retries: %d)", state.url, state.max_retries, extra=extra)
        logger.info("=" * 60, extra=extra)

        try:
            agents = self.agents_factory(costs)
            state = await self._commit(state, begin(state))

            while not state.status.terminal:
                if state.status == JobStatus.SCOUTING:
                    state = await self._step(state, Stage.SCOUT, self._scout(state), costs)
                elif state.status == JobStatus.PLANNING:
                    state = await self._step(state, Stage.ARCHITECT, self._plan(agents, state), costs)
                elif state.status == JobStatus.CODING:
                    state = await self._step(state, Stage.CODER, self._code(agents, state), costs)
                elif state.status == JobStatus.QA:
                    state = await self._step(state, Stage.QA, self._validate(agents, state), costs)
                else:
                    raise IllegalTransitionError(f"No stage runs in status {state.status.value}")
        except Exception as e:
            logger.exception("[PIPELINE] Unhandled error: %s", e, extra=extra)
            state = await self._fail_safely(state, e, costs)

        score = state.qa_result.score if state.qa_result else None
        input_tokens, output_tokens = costs.total_tokens()
        logger.info("=" * 60, extra=extra)
        logger.info(
            "[PIPELINE] Finished: %s, score=%s, retries=%d, %.1fs, %d+%d tokens, $%.4f",
            state.status.value,
            score,
            state.retry_count,
            time.time() - start,
            input_tokens,
            output_tokens,
            state.total_cost_usd,
            extra=extra,
        )
        logger.info("=" * 60, extra=extra)
        return state

    # ------------------------------------------------------------------
    # Stage runners: each returns a StageResult and lets exceptions escape
    # to _step, which converts them to StageFailed.
    # ------------------------------------------------------------------

    async def _scout(self, state: JobState) -> StageResult:
        snapshot = await self.extractor.extract(state.url, state.job_id)
        return ScoutSucceeded(snapshot)

    async def _plan(self, agents: StageAgents, state: JobState) -> StageResult:
        outcome = await agents.architect.execute(state.snapshot, state.instructions)
        return PlanSucceeded(
            plan=outcome.plan,
            chunks_processed=outcome.chunking.processed_chunks,
            chunks_total=outcome.chunking.total_chunks,
            chunks_skipped=outcome.chunking.skipped_chunks,
        )

    async def _code(self, agents: StageAgents, state: JobState) -> StageResult:
        feedback = state.qa_result if state.retry_count else None
        try:
            output = await agents.coder.execute(
                state.plan,
                state.snapshot.assets,
                feedback=feedback,
                attempt=state.retry_count,
            )
        except StructuredOutputError as e:
            logger.warning("[CODER] Unparseable output on attempt %d: %s", state.retry_count + 1, e)
            return CodeUnparseable(str(e))
        return CodeSucceeded(output)

    async def _validate(self, agents: StageAgents, state: JobState) -> StageResult:
        result = await agents.qa.execute(state.generated_output, state.url)
        return QAScored(result)

    # ------------------------------------------------------------------

    async def _step(self, state: JobState, stage: Stage, runner, costs: PipelineCosts) -> JobState:
        extra = {"job_id": state.job_id, "stage": stage.value}
        t0 = time.time()
        logger.info("[PIPELINE] Running %s (status %s)", stage.value, state.status.value, extra=extra)

        try:
            if self.stage_timeout:
                result = await asyncio.wait_for(runner, timeout=self.stage_timeout)
            else:
                result = await runner
        except asyncio.TimeoutError:
            logger.error("[PIPELINE] %s timed out after %.0fs", stage.value, self.stage_timeout, extra=extra)
            result = StageFailed(stage.value, f"Stage timed out after {self.stage_timeout:.0f}s")
        except Exception as e:
            logger.error("[PIPELINE] %s failed: %s", stage.value, _describe(e), extra=extra)
            result = StageFailed(stage.value, _describe(e))

        logger.info("[PIPELINE] %s took %.1fs", stage.value, time.time() - t0, extra=extra)
        nxt = apply(
            state,
            result,
            fail_on_low_score=self.fail_on_low_score,
            total_cost_usd=costs.total_cost(),
        )
        return await self._commit(state, nxt)

    async def _commit(self, prev: JobState, nxt: JobState) -> JobState:
        check_invariants(nxt)
        check_append_only(prev, nxt)
        await self.store.save(nxt)
        return nxt

    async def _fail_safely(
        self,
        state: JobState,
        exc: BaseException,
        costs: Optional[PipelineCosts] = None,
    ) -> JobState:
        """Convert an unexpected error into a persisted failed state, best-effort."""
        if state.status.terminal:
            return state
        stage = state.current_stage.value if state.current_stage else "pipeline"
        failed = apply(
            state,
            StageFailed(stage, _describe(exc)),
            total_cost_usd=costs.total_cost() if costs else None,
        )
        try:
            await self.store.save(failed)
        except Exception as save_error:
            logger.error("[PIPELINE] Could not persist failure for %s: %s", state.job_id, save_error)
        return failed


def build_orchestrator(store: JobStateStore, config=None) -> PipelineOrchestrator:
    """Wire the production collaborators from settings."""
    config = config or settings

    gateway = ModelGateway(
        GatewayConfig.from_settings(config),
        LiteLLMProvider(timeout=config.llm_timeout_seconds),
    )
    screenshotter = PlaywrightScreenshotter(
        viewport_width=config.viewport_width,
        viewport_height=config.viewport_height,
        navigation_timeout_ms=config.navigation_timeout_ms,
        settle_delay_ms=config.settle_delay_ms,
        render_delay_ms=config.preview_render_delay_ms,
    )
    extractor = PlaywrightPageExtractor(
        AssetCache(config.assets_dir, config.public_assets_prefix, config.max_assets),
        viewport_width=config.viewport_width,
        viewport_height=config.viewport_height,
        navigation_timeout_ms=config.navigation_timeout_ms,
        settle_delay_ms=config.settle_delay_ms,
        scroll_step_px=config.scroll_step_px,
        scroll_pause_ms=config.scroll_pause_ms,
    )

    def agents_factory(costs: PipelineCosts) -> StageAgents:
        job_gateway = gateway.with_costs(costs)
        chunker = ContextChunker(
            job_gateway,
            chunk_size=config.chunk_size,
            max_chunks=config.max_chunks,
            compact_every=config.compact_every,
            summary_chars=config.summary_chars,
            temperature=config.architect_temperature,
        )
        return StageAgents(
            architect=PlanSynthesizer(job_gateway, chunker, temperature=config.architect_temperature),
            coder=CodeGenerator(
                job_gateway,
                temperature=config.coder_temperature,
                max_tokens=config.max_tokens,
                max_prompt_assets=config.max_prompt_assets,
            ),
            qa=QualityValidator(
                job_gateway,
                screenshotter,
                pass_threshold=config.pass_threshold,
                temperature=config.qa_temperature,
            ),
        )

    return PipelineOrchestrator(
        store,
        extractor,
        agents_factory,
        max_retries=config.max_retries,
        stage_timeout=config.stage_timeout_seconds,
        fail_on_low_score=config.fail_on_low_score,
    )
