"""Reference host document model: ranges, rich text and decorations."""

from .decorations import Decoration, DecorationSet
from .ranges import AnchorResult, TextRange
from .rich_text import Block, HostDocument, RichTextDocument, StepMap, TextLeaf, TextRun

__all__ = [
    "AnchorResult",
    "Block",
    "Decoration",
    "DecorationSet",
    "HostDocument",
    "RichTextDocument",
    "StepMap",
    "TextLeaf",
    "TextRange",
    "TextRun",
]
