"""Shared fixtures: a scripted symbol oracle and tmp_path workspaces"""
import os
from collections import Counter
from typing import Optional

import pytest

from rhombus.models.document import Position, Range, TextDocument
from rhombus.models.symbols import DocumentSymbol, Location, SymbolKind, WorkspaceSymbol
from rhombus.services.dependency_resolver import DependencyResolver
from rhombus.services.directive_indexer import DirectiveIndexer
from rhombus.services.document_registry import DocumentRegistry
from rhombus.services.memory_service import ConversationLedger
from rhombus.services.symbol_oracle import SymbolTreeCache, word_at
from rhombus.services.symbol_search import SymbolCrossReference
from rhombus.services.workspace import Workspace


class FakeSymbolOracle:
    """
    Oracle answering from dictionaries filled in by each test.

    Definitions and references are looked up by the identifier under the
    queried position, the way a language server resolves them.
    """

    def __init__(self):
        self.symbols: dict[str, list[DocumentSymbol]] = {}
        self.definition_map: dict[str, list[Location]] = {}
        self.reference_map: dict[str, list[Location]] = {}
        self.workspace: list[WorkspaceSymbol] = []
        self.calls: Counter = Counter()

    async def document_symbols(self, document: TextDocument) -> Optional[list[DocumentSymbol]]:
        self.calls["document_symbols"] += 1
        return self.symbols.get(document.path)

    async def definitions(self, document: TextDocument, position: Position) -> Optional[list[Location]]:
        self.calls["definitions"] += 1
        return self.definition_map.get(word_at(document, position) or "")

    async def references(self, document: TextDocument, position: Position) -> Optional[list[Location]]:
        self.calls["references"] += 1
        return self.reference_map.get(word_at(document, position) or "")

    async def workspace_symbols(self, query: str) -> Optional[list[WorkspaceSymbol]]:
        self.calls["workspace_symbols"] += 1
        return [s for s in self.workspace if query.lower() in s.name.lower()]


class BrokenSymbolOracle:
    """Every lookup raises"""

    async def document_symbols(self, document):
        raise RuntimeError("language server crashed")

    async def definitions(self, document, position):
        raise RuntimeError("language server crashed")

    async def references(self, document, position):
        raise RuntimeError("language server crashed")

    async def workspace_symbols(self, query):
        raise RuntimeError("language server crashed")


def make_symbol(
    name: str,
    kind: SymbolKind,
    start: tuple[int, int],
    end: tuple[int, int],
    selection: Optional[tuple[int, int]] = None,
    children: Optional[list[DocumentSymbol]] = None,
) -> DocumentSymbol:
    sel_line, sel_char = selection or start
    return DocumentSymbol(
        name=name,
        kind=kind,
        range=Range(Position(*start), Position(*end)),
        selection_range=Range(Position(sel_line, sel_char), Position(sel_line, sel_char + len(name))),
        children=children or [],
    )


def write_file(root, relative: str, text: str) -> str:
    path = os.path.join(str(root), *relative.split("/"))
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(text)
    return path


@pytest.fixture
def oracle() -> FakeSymbolOracle:
    return FakeSymbolOracle()


@pytest.fixture
def registry() -> DocumentRegistry:
    return DocumentRegistry()


@pytest.fixture
def workspace(tmp_path, registry) -> Workspace:
    return Workspace(str(tmp_path), registry)


@pytest.fixture
def symbol_cache(oracle) -> SymbolTreeCache:
    return SymbolTreeCache(oracle)


@pytest.fixture
def indexer(symbol_cache, registry) -> DirectiveIndexer:
    directive_indexer = DirectiveIndexer(symbol_cache)
    directive_indexer.watch(registry)
    return directive_indexer


@pytest.fixture
def resolver(workspace) -> DependencyResolver:
    return DependencyResolver(workspace)


@pytest.fixture
def search(workspace, oracle, symbol_cache) -> SymbolCrossReference:
    return SymbolCrossReference(workspace, oracle, symbol_cache)


@pytest.fixture
def ledger() -> ConversationLedger:
    return ConversationLedger(max_turns=10)
