"""Output formatting for finished clone jobs.

Writes the generated project files plus JSON (structured) and Markdown
(human-readable) summaries of the run.
"""

import base64
import json
from pathlib import Path, PurePosixPath

from ..pipeline.state import JobState


class OutputFormatter:
    """Formats pipeline output in multiple formats."""

    def __init__(self, output_dir: Path):
        """
        Initialize formatter.

        Args:
            output_dir: Base directory for output files
        """
        self.output_dir = output_dir

    def save_run(self, state: JobState) -> Path:
        """
        Save complete run output.

        Creates:
        - src/: Generated source files
        - package.json: Package manifest of the generated project
        - job_state.json: Final job state (without screenshots)
        - plan.json: Component plan
        - qa.json: Latest validation result (without screenshots)
        - screenshots/original.png, screenshots/generated.png
        - summary.md: Human-readable run summary

        Returns:
            Path to run directory
        """
        timestamp = state.started_at.strftime("%Y-%m-%d_%H-%M-%S")
        run_dir = self.output_dir / f"{timestamp}_{state.job_id}"
        run_dir.mkdir(parents=True, exist_ok=True)

        if state.generated_output:
            self.write_sources(run_dir / "src", state.generated_output.files)
            (run_dir / "package.json").write_text(
                json.dumps(self.format_package_json(state), indent=2), encoding="utf-8"
            )

        if state.plan:
            (run_dir / "plan.json").write_text(state.plan.model_dump_json(by_alias=True, indent=2), encoding="utf-8")

        if state.qa_result:
            qa = state.qa_result.model_dump(by_alias=True, mode="json", exclude={"screenshots"})
            (run_dir / "qa.json").write_text(json.dumps(qa, indent=2), encoding="utf-8")
            self.write_screenshots(run_dir / "screenshots", state)

        job = state.model_dump(
            by_alias=True,
            mode="json",
            exclude={"snapshot": {"dom"}, "qa_result": {"screenshots"}},
        )
        (run_dir / "job_state.json").write_text(json.dumps(job, indent=2, default=str), encoding="utf-8")

        (run_dir / "summary.md").write_text(self.format_summary_markdown(state), encoding="utf-8")
        return run_dir

    def write_sources(self, src_dir: Path, files: dict[str, str]) -> None:
        """Write generated files, refusing paths that escape ``src_dir``."""
        for name, source in files.items():
            rel = PurePosixPath(name.lstrip("/"))
            if ".." in rel.parts:
                continue
            target = src_dir.joinpath(*rel.parts)
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(source, encoding="utf-8")

    def write_screenshots(self, shots_dir: Path, state: JobState) -> None:
        shots = state.qa_result.screenshots
        for name, data in (("original", shots.original), ("generated", shots.generated)):
            if data:
                shots_dir.mkdir(parents=True, exist_ok=True)
                (shots_dir / f"{name}.png").write_bytes(base64.b64decode(data))

    def format_package_json(self, state: JobState) -> dict:
        packages = state.generated_output.packages
        return {
            "name": "generated-clone",
            "private": True,
            "dependencies": {"react": "^18.2.0", "react-dom": "^18.2.0", **packages.dependencies},
            "devDependencies": packages.dev_dependencies,
        }

    def format_summary_markdown(self, state: JobState) -> str:
        """Format the run as human-readable markdown."""
        result = state.qa_result
        score_section = ""
        if result:
            m = result.metrics
            score_section = f"""
## Validation

| Metric | Score |
|--------|-------|
| Structural similarity | {m.structural_similarity} |
| Visual similarity | {m.visual_similarity} |
| Layout accuracy | {m.layout_accuracy} |
| Color accuracy | {m.color_accuracy} |
| **Composite** | **{result.score}/100 ({'passed' if result.passed else 'not passed'})** |
"""
            if result.issues:
                score_section += "\n### Open issues\n\n" + "\n".join(
                    f"- [{i.severity}] {i.description}: {i.suggestion}" for i in result.issues
                ) + "\n"

        attempts = "\n".join(
            f"- Attempt {a.attempt}: {a.score}/100" for a in state.attempt_history
        ) or "- None"
        decisions = "\n".join(
            f"- **{d.stage}**: {d.decision} ({d.reasoning})" for d in state.decision_log
        ) or "- None"
        errors = "\n".join(f"- **{e.stage}**: {e.message}" for e in state.error_log)
        error_section = f"\n## Errors\n\n{errors}\n" if errors else ""

        deviation_section = ""
        if state.plan and state.plan.deviation_notes:
            deviation_section = "\n## Deviations from instructions\n\n" + "\n".join(
                f"- {note}" for note in state.plan.deviation_notes
            ) + "\n"

        files = "\n".join(f"- `{f}`" for f in sorted(state.generated_output.files)) if state.generated_output else "- None"

        return f"""# Clone of {state.url}

**Job:** {state.job_id}
**Status:** {state.status.value}
**Retries:** {state.retry_count}/{state.max_retries}
**Cost:** ${state.total_cost_usd:.4f}
{score_section}{deviation_section}
## Retry history

{attempts}

## Decisions

{decisions}
{error_section}
## Files

{files}
"""
