"""
Symbol Oracle — Tree-sitter based structural facts about source files.

Answers the questions the context pipeline asks of the host's language
intelligence:
- Hierarchical symbol tree of a document (name, kind, range, selection range)
- Definition locations for the identifier at a position
- Reference locations for the identifier at a position
- Workspace-wide fuzzy symbol search

Any answer may be `None` (language not supported, oracle unavailable);
callers treat that as "no additional signal".
"""
import os
import re
import logging
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Protocol

import tree_sitter_python as tspython
import tree_sitter_javascript as tsjavascript
import tree_sitter_typescript as tstypescript
from tree_sitter import Language, Parser, Node

from rhombus.models.document import Position, Range, TextDocument
from rhombus.models.symbols import (
    DocumentSymbol,
    Location,
    SymbolKind,
    WorkspaceSymbol,
    flatten_symbols,
)
from rhombus.services.workspace import SKIP_DIRS

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Oracle Interface
# ─────────────────────────────────────────────────────────────────────────────

class SymbolOracle(Protocol):
    """What the core consumes from the host's language intelligence"""

    async def document_symbols(self, document: TextDocument) -> Optional[list[DocumentSymbol]]: ...

    async def definitions(self, document: TextDocument, position: Position) -> Optional[list[Location]]: ...

    async def references(self, document: TextDocument, position: Position) -> Optional[list[Location]]: ...

    async def workspace_symbols(self, query: str) -> Optional[list[WorkspaceSymbol]]: ...


class NullSymbolOracle:
    """An oracle that is never available"""

    async def document_symbols(self, document: TextDocument) -> Optional[list[DocumentSymbol]]:
        return None

    async def definitions(self, document: TextDocument, position: Position) -> Optional[list[Location]]:
        return None

    async def references(self, document: TextDocument, position: Position) -> Optional[list[Location]]:
        return None

    async def workspace_symbols(self, query: str) -> Optional[list[WorkspaceSymbol]]:
        return None


# ─────────────────────────────────────────────────────────────────────────────
# Language Setup
# ─────────────────────────────────────────────────────────────────────────────

PY_LANGUAGE = Language(tspython.language())
JS_LANGUAGE = Language(tsjavascript.language())
TS_LANGUAGE = Language(tstypescript.language_typescript())
TSX_LANGUAGE = Language(tstypescript.language_tsx())

LANG_MAP = {
    ".py": ("python", PY_LANGUAGE),
    ".js": ("javascript", JS_LANGUAGE),
    ".jsx": ("javascript", JS_LANGUAGE),
    ".mjs": ("javascript", JS_LANGUAGE),
    ".cjs": ("javascript", JS_LANGUAGE),
    ".ts": ("typescript", TS_LANGUAGE),
    ".tsx": ("typescript", TSX_LANGUAGE),
}

IDENTIFIER_RE = re.compile(r"[A-Za-z_$][\w$]*")


def get_language(file_path: str) -> tuple[str, Language] | None:
    """Get tree-sitter language for a file"""
    ext = Path(file_path).suffix.lower()
    return LANG_MAP.get(ext)


def word_at(document: TextDocument, position: Position) -> Optional[str]:
    """The identifier touching `position`, if any"""
    if position.line < 0 or position.line >= document.line_count:
        return None
    line = document.line_at(position.line)
    for match in IDENTIFIER_RE.finditer(line):
        if match.start() <= position.character <= match.end():
            return match.group(0)
    return None


# ─────────────────────────────────────────────────────────────────────────────
# AST Extraction
# ─────────────────────────────────────────────────────────────────────────────

def _node_range(node: Node) -> Range:
    start, end = node.start_point, node.end_point
    return Range(Position(start[0], start[1]), Position(end[0], end[1]))


def build_symbol_tree(root: Node, source: bytes, language: str) -> list[DocumentSymbol]:
    """
    Build a hierarchical symbol tree from a parsed file.

    Classes own their methods, functions own nested functions. Module
    level assignments become variables (private names skipped).
    """
    top: list[DocumentSymbol] = []

    def get_text(node: Node) -> str:
        return source[node.start_byte:node.end_byte].decode("utf-8", errors="replace")

    def make(node: Node, name_node: Node, kind: SymbolKind) -> DocumentSymbol:
        return DocumentSymbol(
            name=get_text(name_node),
            kind=kind,
            range=_node_range(node),
            selection_range=_node_range(name_node),
        )

    def walk_children(node: Node, out: list[DocumentSymbol], parent_kind: Optional[str]):
        for child in node.children:
            walk(child, out, parent_kind)

    def walk_python(node: Node, out: list[DocumentSymbol], parent_kind: Optional[str]):
        if node.type == "function_definition":
            name_node = node.child_by_field_name("name")
            if name_node:
                kind: SymbolKind = "method" if parent_kind == "class" else "function"
                symbol = make(node, name_node, kind)
                out.append(symbol)
                walk_children(node, symbol.children, kind)
                return

        elif node.type == "class_definition":
            name_node = node.child_by_field_name("name")
            if name_node:
                symbol = make(node, name_node, "class")
                out.append(symbol)
                walk_children(node, symbol.children, "class")
                return

        elif node.type == "assignment" and parent_kind is None:
            left = node.child_by_field_name("left")
            if left and left.type == "identifier":
                name = get_text(left)
                if not name.startswith("_"):
                    out.append(make(node, left, "variable"))
            return

        walk_children(node, out, parent_kind)

    def walk_ts(node: Node, out: list[DocumentSymbol], parent_kind: Optional[str]):
        if node.type in ("function_declaration", "generator_function_declaration"):
            name_node = node.child_by_field_name("name")
            if name_node:
                symbol = make(node, name_node, "function")
                out.append(symbol)
                walk_children(node, symbol.children, "function")
                return

        elif node.type in ("class_declaration", "abstract_class_declaration", "class"):
            name_node = node.child_by_field_name("name")
            if name_node:
                symbol = make(node, name_node, "class")
                out.append(symbol)
                walk_children(node, symbol.children, "class")
                return

        elif node.type == "method_definition" and parent_kind == "class":
            name_node = node.child_by_field_name("name")
            if name_node:
                symbol = make(node, name_node, "method")
                out.append(symbol)
                walk_children(node, symbol.children, "method")
                return

        elif node.type == "interface_declaration":
            name_node = node.child_by_field_name("name")
            if name_node:
                out.append(make(node, name_node, "interface"))
                return

        elif node.type == "type_alias_declaration":
            name_node = node.child_by_field_name("name")
            if name_node:
                out.append(make(node, name_node, "type"))
                return

        elif node.type == "enum_declaration":
            name_node = node.child_by_field_name("name")
            if name_node:
                out.append(make(node, name_node, "enum"))
                return

        elif node.type in ("lexical_declaration", "variable_declaration"):
            for child in node.children:
                if child.type != "variable_declarator":
                    continue
                name_node = child.child_by_field_name("name")
                value_node = child.child_by_field_name("value")
                if not name_node or name_node.type != "identifier":
                    continue
                if value_node and value_node.type in ("arrow_function", "function", "function_expression"):
                    symbol = make(node, name_node, "function")
                    out.append(symbol)
                    walk_children(value_node, symbol.children, "function")
                elif parent_kind is None:
                    out.append(make(node, name_node, "variable"))
            return

        walk_children(node, out, parent_kind)

    walk = walk_python if language == "python" else walk_ts
    walk(root, top, None)
    return top


# ─────────────────────────────────────────────────────────────────────────────
# Index Structures
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class IndexedFile:
    """Symbols and text of one indexed file"""
    document: TextDocument
    language: str
    symbols: list[DocumentSymbol] = field(default_factory=list)


@dataclass
class SymbolIndex:
    """In-memory index of all symbols in a project"""
    # Map: symbol_name -> list of (file_path, symbol)
    by_name: dict[str, list[tuple[str, DocumentSymbol]]] = field(default_factory=lambda: defaultdict(list))

    # Map: file_path -> IndexedFile
    by_file: dict[str, IndexedFile] = field(default_factory=dict)

    project_root: str = ""


# ─────────────────────────────────────────────────────────────────────────────
# Tree-sitter Oracle
# ─────────────────────────────────────────────────────────────────────────────

class TreeSitterSymbolOracle:
    """
    Tree-sitter backed Symbol Oracle.

    Usage:
        oracle = TreeSitterSymbolOracle()
        oracle.index_project("/path/to/project")

        symbols = await oracle.document_symbols(document)
        locations = await oracle.definitions(document, Position(10, 4))

    Indexing may run on a worker thread (`asyncio.to_thread`) while the
    event loop queries; index updates are serialised by a lock and every
    parse gets its own Parser.
    """

    def __init__(self):
        self.index = SymbolIndex()
        self._lock = threading.RLock()

    def parse(self, document: TextDocument) -> Optional[IndexedFile]:
        lang_info = get_language(document.path)
        if not lang_info:
            return None

        language_name, language = lang_info
        parser = Parser()
        parser.language = language
        source = document.text.encode("utf-8")
        tree = parser.parse(source)
        symbols = build_symbol_tree(tree.root_node, source, language_name)
        return IndexedFile(document=document, language=language_name, symbols=symbols)

    # ─────────────────────────────────────────────────────────────────────────
    # Indexing
    # ─────────────────────────────────────────────────────────────────────────

    def index_document(self, document: TextDocument) -> Optional[IndexedFile]:
        """Parse a document and replace whatever the index held for its path"""
        indexed = self.parse(document)
        if indexed is None:
            return None
        with self._lock:
            self.remove_file(document.path)
            self.index.by_file[document.path] = indexed
            for symbol in flatten_symbols(indexed.symbols):
                self.index.by_name[symbol.name].append((document.path, symbol))
        return indexed

    def index_file(self, file_path: str) -> Optional[IndexedFile]:
        """Read a file from disk and index it"""
        if not get_language(file_path):
            return None
        try:
            with open(file_path, "r", encoding="utf-8", errors="replace") as f:
                content = f.read()
        except OSError as e:
            logger.warning(f"SymbolOracle: failed to read {file_path}: {e}")
            return None
        return self.index_document(TextDocument(path=file_path, text=content))

    def remove_file(self, file_path: str) -> bool:
        with self._lock:
            old = self.index.by_file.pop(file_path, None)
            if old is None:
                return False
            for symbol in flatten_symbols(old.symbols):
                entries = self.index.by_name.get(symbol.name)
                if not entries:
                    continue
                entries[:] = [(path, s) for path, s in entries if path != file_path]
                if not entries:
                    del self.index.by_name[symbol.name]
        return True

    def index_project(self, project_root: str, max_files: int = 5000) -> int:
        """
        Index all supported files in a project.

        Returns:
            Number of files indexed
        """
        with self._lock:
            self.index = SymbolIndex(project_root=project_root)
        count = 0

        for root, dirs, files in os.walk(project_root):
            dirs[:] = [d for d in dirs if d not in SKIP_DIRS]

            for filename in files:
                if count >= max_files:
                    logger.warning(f"SymbolOracle: reached max files limit ({max_files})")
                    return count

                file_path = os.path.join(root, filename)
                if get_language(file_path) and self.index_file(file_path):
                    count += 1

        logger.info(f"SymbolOracle: indexed {count} files, {len(self.index.by_name)} unique symbols")
        return count

    # ─────────────────────────────────────────────────────────────────────────
    # Oracle queries
    # ─────────────────────────────────────────────────────────────────────────

    async def document_symbols(self, document: TextDocument) -> Optional[list[DocumentSymbol]]:
        indexed = self.index_document(document)
        if indexed is None:
            return None
        return indexed.symbols

    async def definitions(self, document: TextDocument, position: Position) -> Optional[list[Location]]:
        name = word_at(document, position)
        if not name:
            return None
        with self._lock:
            entries = list(self.index.by_name.get(name, []))
        return [Location(file=path, range=symbol.range) for path, symbol in entries]

    async def references(self, document: TextDocument, position: Position) -> Optional[list[Location]]:
        name = word_at(document, position)
        if not name:
            return None

        pattern = re.compile(rf"(?<![\w$]){re.escape(name)}(?![\w$])")
        locations: list[Location] = []
        with self._lock:
            files = list(self.index.by_file.items())
        for path, indexed in files:
            indexed_doc = indexed.document
            for match in pattern.finditer(indexed_doc.text):
                locations.append(Location(
                    file=path,
                    range=Range(indexed_doc.position_at(match.start()), indexed_doc.position_at(match.end())),
                ))
        return locations

    async def workspace_symbols(self, query: str) -> Optional[list[WorkspaceSymbol]]:
        return self.search_symbols(query)

    def search_symbols(self, query: str, limit: int = 20) -> list[WorkspaceSymbol]:
        """
        Search for symbols matching a query (fuzzy match).

        Exact > prefix > substring > word-boundary, then by name.
        """
        query_lower = query.lower()
        if not query_lower:
            return []
        results: list[tuple[int, WorkspaceSymbol]] = []

        with self._lock:
            snapshot = [(name, list(entries)) for name, entries in self.index.by_name.items()]

        for name, entries in snapshot:
            name_lower = name.lower()

            if name_lower == query_lower:
                score = 100
            elif name_lower.startswith(query_lower):
                score = 80
            elif query_lower in name_lower:
                score = 60
            elif any(part.startswith(query_lower) for part in name_lower.split("_")):
                score = 50
            else:
                continue

            for path, symbol in entries:
                results.append((score, WorkspaceSymbol(
                    name=symbol.name,
                    kind=symbol.kind,
                    location=Location(file=path, range=symbol.range),
                )))

        results.sort(key=lambda x: (-x[0], x[1].name))
        return [sym for _, sym in results[:limit]]

    def get_project_summary(self) -> dict:
        """Get a summary of the indexed project"""
        by_kind: dict[str, int] = defaultdict(int)
        with self._lock:
            for entries in self.index.by_name.values():
                for _, symbol in entries:
                    by_kind[symbol.kind] += 1
            files = list(self.index.by_file.values())
        return {
            "project_root": self.index.project_root,
            "total_files": len(files),
            "total_symbols": sum(by_kind.values()),
            "by_kind": dict(by_kind),
            "languages": sorted({f.language for f in files}),
        }


# ─────────────────────────────────────────────────────────────────────────────
# Symbol Tree Cache
# ─────────────────────────────────────────────────────────────────────────────

class SymbolTreeCache:
    """
    Per-document symbol tree cache in front of an oracle.

    Keyed by (path, version) so an edited buffer never gets a stale tree.
    Oracle failures are absorbed and reported as "unavailable" (None).
    """

    def __init__(self, oracle: SymbolOracle):
        self.oracle = oracle
        self._cache: dict[tuple[str, int], list[DocumentSymbol]] = {}

    async def get(self, document: TextDocument) -> Optional[list[DocumentSymbol]]:
        key = (document.path, document.version)
        if key in self._cache:
            return self._cache[key]

        try:
            symbols = await self.oracle.document_symbols(document)
        except Exception as e:
            logger.warning(f"SymbolTreeCache: symbol provider failed for {document.path}: {e}")
            return None

        if symbols:
            self._cache[key] = symbols
        return symbols

    def invalidate(self, path: str):
        for key in [k for k in self._cache if k[0] == path]:
            del self._cache[key]

    def clear(self):
        self._cache.clear()

    def __len__(self) -> int:
        return len(self._cache)
