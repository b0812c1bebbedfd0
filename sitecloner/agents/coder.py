"""Code generation: component plan plus QA feedback to React source files."""

import logging
from pathlib import PurePosixPath
from typing import Optional

from ..errors import StageContractError
from ..prompts import render
from ..scout.models import AssetDescriptor
from ..utils.parsing import parse_model
from .base_agent import BaseAgent
from .models import ENTRY_FILE, ComponentPlan, GeneratedOutput, ValidationResult

logger = logging.getLogger(__name__)

_ENTRY_STEMS = ("app", "main", "index", "page", "home")
_SOURCE_EXTS = (".tsx", ".jsx", ".ts", ".js")


def resolve_entry_file(files: dict[str, str]) -> Optional[str]:
    """Return the path that should serve as the entry file, or None."""
    if ENTRY_FILE in files:
        return ENTRY_FILE

    paths = sorted(files)
    for path in paths:
        if path.lower().endswith("app.tsx"):
            return path

    for stem in _ENTRY_STEMS:
        for ext in _SOURCE_EXTS:
            for path in paths:
                if PurePosixPath(path).name.lower() == f"{stem}{ext}":
                    return path

    components = [p for p in paths if p.lower().endswith((".tsx", ".jsx"))]
    if len(components) == 1:
        return components[0]
    return None


def normalize_entry_file(output: GeneratedOutput) -> GeneratedOutput:
    """Copy the main component to App.tsx when the model named it differently.

    The original file is kept so sibling imports of it still resolve.

    Raises:
        StageContractError: No file is a plausible entry point.
    """
    entry = resolve_entry_file(output.files)
    if entry is None:
        available = ", ".join(sorted(output.files)) or "none"
        raise StageContractError(f"Generated code missing {ENTRY_FILE}. Available files: {available}")
    if entry == ENTRY_FILE:
        return output

    files = dict(output.files)
    files[ENTRY_FILE] = files[entry]
    logger.info("[CODER] Copied %s to %s", entry, ENTRY_FILE)
    return output.model_copy(update={"files": files})


def remap_asset_urls(output: GeneratedOutput, assets: list[AssetDescriptor]) -> tuple[GeneratedOutput, int]:
    """Replace every known original asset URL with its cached local path.

    Longer URLs are replaced first so that a URL that prefixes another never
    clobbers it.
    """
    mapping = sorted(
        ((a.original_url, a.local_path) for a in assets if a.original_url and a.local_path),
        key=lambda pair: len(pair[0]),
        reverse=True,
    )
    replaced = 0
    files = {}
    for path, source in output.files.items():
        for original, local in mapping:
            count = source.count(original)
            if count:
                source = source.replace(original, local)
                replaced += count
        files[path] = source
    return output.model_copy(update={"files": files}), replaced


def format_feedback(feedback: Optional[ValidationResult]) -> str:
    if feedback is None:
        return ""
    lines = [issue.feedback_line() for issue in feedback.issues]
    header = f"\nPREVIOUS ATTEMPT SCORED {feedback.score}/100."
    if not lines:
        return header + " Improve overall fidelity to the plan.\n"
    return header + "\nPREVIOUS ISSUES TO FIX:\n" + "\n".join(lines) + "\n"


class CodeGenerator(BaseAgent):
    """
    Generates React + Tailwind files from a ComponentPlan.

    Args:
        gateway: Gateway for text calls
        max_prompt_assets: How many asset descriptors to include in the user prompt
    """

    step_name = "coder"

    def __init__(self, gateway, temperature: float = 0.2, max_tokens: int = 16384, max_prompt_assets: int = 20):
        super().__init__(gateway, temperature=temperature, max_tokens=max_tokens)
        self.max_prompt_assets = max_prompt_assets

    async def execute(
        self,
        plan: ComponentPlan,
        assets: list[AssetDescriptor],
        feedback: Optional[ValidationResult] = None,
        attempt: int = 0,
    ) -> GeneratedOutput:
        mappings = "\n".join(f"{a.original_url} → {a.local_path}" for a in assets)
        system = render(
            "coder_system",
            asset_mappings=mappings or "(no images were downloaded)",
            example_path=assets[0].local_path if assets else "/temp/assets/job-123/img-001.png",
            feedback=format_feedback(feedback),
        )

        shown = assets[: self.max_prompt_assets]
        prompt = render(
            "coder_user",
            plan=plan.model_dump_json(by_alias=True, indent=2),
            total_assets=len(assets),
            shown_assets=len(shown),
            assets="[\n" + ",\n".join(a.model_dump_json(by_alias=True) for a in shown) + "\n]",
        )

        logger.info(
            "[CODER] Generating code (attempt %d, %d feedback issues)",
            attempt + 1,
            len(feedback.issues) if feedback else 0,
        )
        text = await self._ask(prompt, system=system)
        output = parse_model(text, GeneratedOutput)
        output = normalize_entry_file(output)
        output, replaced = remap_asset_urls(output, assets)

        logger.info("[CODER] Code generated: %d files, %d asset references remapped", len(output.files), replaced)
        return output
