"""
Symbol Cross-Reference Search — definitions, references and imported
symbols reachable from one context snippet.

Provides:
- Candidate symbol extraction (oracle symbol tree + regex declarations)
- Definition / reference lookups through the Symbol Oracle, cached per
  (file, line, column, name)
- Bounded text search across the workspace when the oracle has nothing

Every stage is capped; a big workspace must not turn one request into a
full scan.
"""
import re
import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from rhombus.models.context import ContextItem
from rhombus.models.document import Position, Range, TextDocument
from rhombus.models.symbols import CodebaseSearchResult, SymbolKind, SymbolReference, flatten_symbols
from rhombus.services.symbol_oracle import SymbolOracle, SymbolTreeCache
from rhombus.services.workspace import Deadline, Workspace

logger = logging.getLogger(__name__)

MIN_SYMBOL_LENGTH = 3
TEXT_SEARCH_GLOB = "**/*.{ts,tsx,js,jsx,py}"
TEXT_SEARCH_EXCLUDE = "**/node_modules/**"
TEXT_SEARCH_FILE_LIMIT = 50
TEXT_DEFINITIONS_PER_NAME = 3
REFERENCES_PER_SYMBOL = 5
RELATED_SYMBOLS_LIMIT = 5
WORKSPACE_SYMBOL_LIMIT = 10


# ─────────────────────────────────────────────────────────────────────────────
# Data Structures
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class SymbolCandidate:
    """A name worth looking up and where it appears"""
    name: str
    position: Position
    kind: SymbolKind = "variable"


# ─────────────────────────────────────────────────────────────────────────────
# Symbol extraction strategy
# ─────────────────────────────────────────────────────────────────────────────

class SymbolExtractor(Protocol):
    """Finds declared or imported names in a text fragment; returns (name, offset) pairs"""

    def extract(self, content: str) -> list[tuple[str, int]]: ...


class RegexSymbolExtractor:
    """Declaration-shaped regexes for TS/JS sources"""

    PATTERNS = [
        re.compile(r"(?:class|interface|type|enum)\s+(\w+)"),
        re.compile(r"(?:function|const|let|var)\s+(\w+)"),
        re.compile(r"(\w+)\s*[:=]\s*(?:function|\()"),
        re.compile(r"""import\s+(?:\{[^}]*\}|\w+|[^}]*)\s+from\s+['"`]([^'"`]+)"""),
        re.compile(r"""import\s*\(\s*['"`]([^'"`]+)"""),
    ]

    def extract(self, content: str) -> list[tuple[str, int]]:
        found: list[tuple[str, int]] = []
        for pattern in self.PATTERNS:
            for match in pattern.finditer(content):
                if match.group(1):
                    found.append((match.group(1), match.start(1)))
        return found


IMPORT_BINDINGS_RE = re.compile(
    r"""import\s+(?:\{([^}]*)\}|\*\s+as\s+(\w+)|(\w+))\s+from\s+['"`]([^'"`]+)"""
)


def definition_patterns(name: str) -> list[re.Pattern]:
    """Declaration shapes for `name` used by the text fallback"""
    escaped = re.escape(name)
    return [
        re.compile(rf"(?:class|interface|type|enum)\s+{escaped}\s*[\{{<]"),
        re.compile(rf"(?:function|const|let|var)\s+{escaped}\s*[\(=:]"),
        re.compile(rf"(?:def|class)\s+{escaped}\s*[\(:]"),
    ]


# ─────────────────────────────────────────────────────────────────────────────
# Cross-reference search
# ─────────────────────────────────────────────────────────────────────────────

class SymbolCrossReference:
    """
    Usage:
        search = SymbolCrossReference(workspace, oracle, symbol_cache)
        result = await search.find_related(current_item, deadline)
        result.definitions, result.references, result.related_symbols
    """

    def __init__(
        self,
        workspace: Workspace,
        oracle: SymbolOracle,
        symbol_cache: SymbolTreeCache,
        extractor: Optional[SymbolExtractor] = None,
    ):
        self.workspace = workspace
        self.oracle = oracle
        self.symbol_cache = symbol_cache
        self.extractor = extractor or RegexSymbolExtractor()
        self._definitions: dict[str, list[SymbolReference]] = {}
        self._references: dict[str, list[SymbolReference]] = {}

    async def find_related(self, item: ContextItem, deadline: Optional[Deadline] = None) -> CodebaseSearchResult:
        result = CodebaseSearchResult()

        try:
            document = await self.workspace.open_document(item.file)
        except Exception as e:
            logger.warning(f"SymbolCrossReference: cannot open {item.file}: {e}")
            return result

        for candidate in await self.extract_candidates(document, item.range):
            if deadline and deadline.expired:
                logger.debug("SymbolCrossReference: deadline reached, stopping candidate lookups")
                break
            definitions = await self.find_definitions(document, candidate.position, candidate.name, deadline)
            result.definitions.extend(definitions)

            references = await self.find_references(document, candidate.position, candidate.name)
            result.references.extend(references[:REFERENCES_PER_SYMBOL])

        result.related_symbols = await self.imported_symbols(item.content, deadline)
        return result

    async def extract_candidates(self, document: TextDocument, rng: Range) -> list[SymbolCandidate]:
        """Names declared or imported inside `rng`; short names dropped, duplicates removed"""
        candidates: list[SymbolCandidate] = []

        symbols = await self.symbol_cache.get(document)
        for symbol in flatten_symbols(symbols or []):
            if symbol.range.intersects(rng):
                candidates.append(SymbolCandidate(symbol.name, symbol.selection_range.start, symbol.kind))

        base_offset = document.offset_at(rng.start)
        for name, offset in self.extractor.extract(document.get_text(rng)):
            candidates.append(SymbolCandidate(name, document.position_at(base_offset + offset)))

        seen: set[tuple[str, int, int]] = set()
        unique: list[SymbolCandidate] = []
        for candidate in candidates:
            if len(candidate.name) < MIN_SYMBOL_LENGTH:
                continue
            key = (candidate.name, candidate.position.line, candidate.position.character)
            if key in seen:
                continue
            seen.add(key)
            unique.append(candidate)
        return unique

    async def find_definitions(
        self,
        document: TextDocument,
        position: Position,
        name: str,
        deadline: Optional[Deadline] = None,
    ) -> list[SymbolReference]:
        cache_key = f"{document.path}:{position.line}:{position.character}:{name}"
        if cache_key in self._definitions:
            return self._definitions[cache_key]

        definitions: list[SymbolReference] = []
        try:
            locations = await self.oracle.definitions(document, position)
        except Exception as e:
            logger.warning(f"SymbolCrossReference: definition lookup failed for {name}: {e}")
            locations = None

        for location in locations or []:
            # The declaration itself is not a useful "definition"
            if location.file == document.path and location.range.contains(position):
                continue
            definitions.append(SymbolReference(file=location.file, range=location.range, kind="definition", symbol=name))

        if not definitions:
            definitions = await self.text_definition_search(name, document.path, deadline)

        # A scan cut short by the deadline is partial; let the next request redo it
        if deadline and deadline.expired:
            return definitions

        self._definitions[cache_key] = definitions
        return definitions

    async def find_references(self, document: TextDocument, position: Position, name: str) -> list[SymbolReference]:
        cache_key = f"refs:{document.path}:{position.line}:{position.character}:{name}"
        if cache_key in self._references:
            return self._references[cache_key]

        try:
            locations = await self.oracle.references(document, position)
        except Exception as e:
            logger.warning(f"SymbolCrossReference: reference lookup failed for {name}: {e}")
            return []

        references = [
            SymbolReference(file=location.file, range=location.range, kind="reference", symbol=name)
            for location in locations or []
        ]
        self._references[cache_key] = references
        return references

    async def text_definition_search(
        self,
        name: str,
        exclude_file: str = "",
        deadline: Optional[Deadline] = None,
    ) -> list[SymbolReference]:
        """Declaration-shaped text matches for `name`, at most three"""
        patterns = definition_patterns(name)
        definitions: list[SymbolReference] = []

        try:
            files = await self.workspace.find_files(
                TEXT_SEARCH_GLOB, TEXT_SEARCH_EXCLUDE, TEXT_SEARCH_FILE_LIMIT, deadline
            )
        except Exception as e:
            logger.warning(f"SymbolCrossReference: file search failed for {name}: {e}")
            return definitions

        for file_path in files:
            if file_path == exclude_file:
                continue
            if deadline and deadline.expired:
                break
            try:
                document = await self.workspace.open_document(file_path)
            except Exception as e:
                logger.debug(f"SymbolCrossReference: skipping unreadable {file_path}: {e}")
                continue

            for pattern in patterns:
                for match in pattern.finditer(document.text):
                    position = document.position_at(match.start())
                    definitions.append(SymbolReference(
                        file=file_path,
                        range=Range(position, position),
                        kind="definition",
                        symbol=name,
                    ))
            if len(definitions) >= TEXT_DEFINITIONS_PER_NAME:
                break

        return definitions[:TEXT_DEFINITIONS_PER_NAME]

    async def imported_symbols(self, content: str, deadline: Optional[Deadline] = None) -> list[SymbolReference]:
        """Definitions of names the snippet imports (named, namespace and default imports)"""
        names: list[str] = []
        for match in IMPORT_BINDINGS_RE.finditer(content):
            named, namespace, default = match.group(1), match.group(2), match.group(3)
            if named:
                for part in named.split(","):
                    names.append(part.strip().split(" as ")[0].strip())
            if namespace or default:
                names.append(namespace or default)

        related: list[SymbolReference] = []
        for name in names:
            if len(name) < MIN_SYMBOL_LENGTH:
                continue
            if len(related) >= RELATED_SYMBOLS_LIMIT:
                break
            related.extend(await self.text_definition_search(name, "", deadline))
        return related[:RELATED_SYMBOLS_LIMIT]

    async def search_workspace_for_symbol(self, name: str) -> list[SymbolReference]:
        """Oracle workspace symbol search, first ten hits"""
        try:
            symbols = await self.oracle.workspace_symbols(name)
        except Exception as e:
            logger.warning(f"SymbolCrossReference: workspace symbol search failed for {name}: {e}")
            return []

        return [
            SymbolReference(file=s.location.file, range=s.location.range, kind="definition", symbol=s.name)
            for s in (symbols or [])[:WORKSPACE_SYMBOL_LIMIT]
        ]

    def clear_cache(self):
        self._definitions.clear()
        self._references.clear()
