"""Data models for the page extraction snapshot."""

from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class SnapshotModel(BaseModel):
    """Base for snapshot models: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DomNode(SnapshotModel):
    """One element of the captured DOM tree."""

    tag: str
    selector: str = ""
    classes: list[str] = []
    text: Optional[str] = Field(default=None, description="Own text, truncated to 100 chars")
    html: Optional[str] = Field(default=None, description="Outer HTML excerpt, truncated to 500 chars")
    children: list["DomNode"] = []

    def count(self) -> int:
        """Total number of nodes in this subtree, including this one."""
        return 1 + sum(child.count() for child in self.children)


class ComputedStyleRecord(SnapshotModel):
    selector: str
    styles: dict[str, str] = {}


class LayoutBox(SnapshotModel):
    selector: str
    x: float = 0
    y: float = 0
    width: float = 0
    height: float = 0
    z_index: int = 0


class AssetDescriptor(SnapshotModel):
    """A downloaded page asset and where its cached copy is served from."""

    original_url: str
    local_path: str
    type: Literal["image", "font", "svg"] = "image"


class AnimationDescriptor(SnapshotModel):
    selector: str
    type: Literal["transition", "animation", "transform"]
    properties: dict[str, str] = {}


class Breakpoints(SnapshotModel):
    mobile: int = 375
    tablet: int = 768
    desktop: int = 1440


class PageMeta(SnapshotModel):
    title: str = ""
    description: str = ""
    viewport: str = ""
    theme: Literal["light", "dark", "unknown"] = "unknown"


class ExtractionSnapshot(SnapshotModel):
    """Structured capture of one page at one point in time. Read-only after extraction."""

    url: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    dom: DomNode
    computed_styles: list[ComputedStyleRecord] = []
    layout: list[LayoutBox] = []
    assets: list[AssetDescriptor] = []
    animations: list[AnimationDescriptor] = []
    breakpoints: Breakpoints = Field(default_factory=Breakpoints)
    meta: PageMeta = Field(default_factory=PageMeta)
