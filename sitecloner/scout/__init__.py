"""Page extraction: browser capture and the shared asset cache."""

from .models import (
    AnimationDescriptor,
    AssetDescriptor,
    ComputedStyleRecord,
    DomNode,
    ExtractionSnapshot,
    LayoutBox,
    PageMeta,
)

__all__ = [
    "AnimationDescriptor",
    "AssetDescriptor",
    "ComputedStyleRecord",
    "DomNode",
    "ExtractionSnapshot",
    "LayoutBox",
    "PageMeta",
]
