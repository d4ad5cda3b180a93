"""
Symbol model — what the Symbol Oracle hands back and what the
cross-reference search produces.
"""
from dataclasses import dataclass, field
from typing import Literal, Optional

from rhombus.models.document import Position, Range

SymbolKind = Literal[
    "function", "class", "method", "variable", "interface", "type", "enum", "module",
]
ReferenceKind = Literal["definition", "reference", "implementation"]


@dataclass
class DocumentSymbol:
    """One node of a document's hierarchical symbol tree"""
    name: str
    kind: SymbolKind
    range: Range                  # full extent, body included
    selection_range: Range        # the name itself
    children: list["DocumentSymbol"] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "kind": self.kind,
            "range": self.range.to_dict(),
            "selection_range": self.selection_range.to_dict(),
            "children": [child.to_dict() for child in self.children],
        }


@dataclass(frozen=True)
class Location:
    """A range inside a file"""
    file: str
    range: Range


@dataclass
class WorkspaceSymbol:
    """Result of a workspace-wide symbol search"""
    name: str
    kind: SymbolKind
    location: Location


@dataclass
class SymbolReference:
    """A definition/reference hit produced by cross-reference search"""
    file: str
    range: Range
    kind: ReferenceKind
    symbol: str


@dataclass
class CodebaseSearchResult:
    definitions: list[SymbolReference] = field(default_factory=list)
    references: list[SymbolReference] = field(default_factory=list)
    related_symbols: list[SymbolReference] = field(default_factory=list)


def flatten_symbols(symbols: list[DocumentSymbol]) -> list[DocumentSymbol]:
    """Pre-order flattening: each parent precedes its children"""
    flat: list[DocumentSymbol] = []
    for symbol in symbols:
        flat.append(symbol)
        flat.extend(flatten_symbols(symbol.children))
    return flat


def innermost_containing(
    symbols: list[DocumentSymbol],
    target: Position | Range,
) -> Optional[DocumentSymbol]:
    """
    Top-down search for the smallest symbol containing `target`.

    The first sibling that contains the target wins; its children are
    searched next and the deepest hit is returned.
    """
    for symbol in symbols:
        if symbol.range.contains(target):
            return innermost_containing(symbol.children, target) or symbol
    return None
