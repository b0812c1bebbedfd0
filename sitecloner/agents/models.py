"""Structured payloads exchanged between the planning, coding and QA agents."""

import uuid
from typing import Any, Literal, Optional

from pydantic import Field, field_validator

from ..scout.models import SnapshotModel

ENTRY_FILE = "App.tsx"


class ComponentSpec(SnapshotModel):
    """One node of the planned component tree."""

    name: str
    type: Literal["layout", "content", "interactive"] = "content"
    selector: str = ""
    tailwind_classes: list[str] = []
    props: dict[str, Any] = {}
    children: list["ComponentSpec"] = []

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, v: Any) -> str:
        v = str(v or "").lower()
        return v if v in ("layout", "content", "interactive") else "content"


class ConflictResolution(SnapshotModel):
    type: Literal["user-vs-reality", "ambiguous-structure", "missing-data"]
    description: str
    decision: str = ""
    reasoning: str = ""


class ColorPalette(SnapshotModel):
    primary: str = ""
    secondary: str = ""
    background: str = ""
    text: str = ""
    accent: str = ""


class Typography(SnapshotModel):
    heading_font: str = ""
    body_font: str = ""
    sizes: dict[str, str] = {}


class Spacing(SnapshotModel):
    unit: float = 4
    scale: list[float] = []


class ComponentPlan(SnapshotModel):
    """Component hierarchy plus design tokens. Synthesized once per job."""

    components: list[ComponentSpec]
    conflicts: list[ConflictResolution] = []
    deviation_notes: list[str] = []
    color_palette: ColorPalette = Field(default_factory=ColorPalette)
    typography: Typography = Field(default_factory=Typography)
    spacing: Spacing = Field(default_factory=Spacing)


class FileDependency(SnapshotModel):
    component: str
    imports: list[str] = []


class PackageManifest(SnapshotModel):
    dependencies: dict[str, str] = {}
    dev_dependencies: dict[str, str] = {}


class GeneratedOutput(SnapshotModel):
    """Source files of one coder attempt. Replaced wholesale on every attempt."""

    files: dict[str, str]
    dependencies: list[FileDependency] = []
    packages: PackageManifest = Field(default_factory=PackageManifest)

    @property
    def entry_source(self) -> Optional[str]:
        return self.files.get(ENTRY_FILE)


class Metrics(SnapshotModel):
    structural_similarity: int = 0
    visual_similarity: int = 0
    layout_accuracy: int = 0
    color_accuracy: int = 0


class Issue(SnapshotModel):
    severity: Literal["critical", "major", "minor"] = "minor"
    category: Literal["layout", "color", "typography", "spacing", "component"] = "component"
    description: str
    suggestion: str = ""

    @field_validator("severity", mode="before")
    @classmethod
    def _normalize_severity(cls, v: Any) -> str:
        v = str(v or "").lower()
        return v if v in ("critical", "major", "minor") else "minor"

    @field_validator("category", mode="before")
    @classmethod
    def _normalize_category(cls, v: Any) -> str:
        v = str(v or "").lower()
        return v if v in ("layout", "color", "typography", "spacing", "component") else "component"

    def feedback_line(self) -> str:
        return f"- {self.description}: {self.suggestion}"


class Screenshots(SnapshotModel):
    original: str = ""
    generated: str = ""


class ValidationResult(SnapshotModel):
    """Outcome of one QA attempt."""

    result_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    score: int
    passed: bool
    metrics: Metrics = Field(default_factory=Metrics)
    screenshots: Screenshots = Field(default_factory=Screenshots)
    issues: list[Issue] = []
    overall_assessment: Optional[str] = None
