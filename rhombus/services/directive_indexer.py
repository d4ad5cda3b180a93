"""
Directive Indexer — Finds `@ai` instructions written in source comments.

Recognised forms (comment marker is any of `//`, `#`, `--`):

    // @ai prompt="add retries" id="retry-1"   tagged prompt, optional id
    # @ai: validate the payload                 single-line directive
    -- @ai-global:                              file-level block; the
    -- every following comment line             contiguous comment lines
    -- is part of the body                      below form its body

Tagged and single-line directives bind to the next symbol that starts
after their line (rest of the file when there is none). Global blocks
bind to the empty range at the start of the file.
"""
import re
import uuid
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from rhombus.models.document import Position, Range, TextDocument, ZERO_RANGE
from rhombus.models.symbols import flatten_symbols
from rhombus.services.document_registry import DocumentEvent, DocumentRegistry
from rhombus.services.symbol_oracle import SymbolTreeCache

logger = logging.getLogger(__name__)

COMMENT_MARKER = r"(?://|#|--)"

TAGGED_PROMPT_RE = re.compile(COMMENT_MARKER + r'\s*@ai\s+prompt="([^"]+)"(?:\s+id="([^"]+)")?')
LINE_DIRECTIVE_RE = re.compile(COMMENT_MARKER + r"\s*@ai:\s*(\S.*)$")
GLOBAL_BLOCK_RE = re.compile(COMMENT_MARKER + r"\s*@ai-global:\s*$")
BLOCK_LINE_RE = re.compile(r"^\s*" + COMMENT_MARKER + r"\s?")

# Namespace for ids derived from (file, line, text)
DIRECTIVE_NAMESPACE = uuid.UUID("9b1c3f0e-5a7d-4e52-9a43-2f6c0d8b7e11")


class DirectiveNotFoundError(LookupError):
    """No directive with the requested id exists in the file"""

    def __init__(self, file: str, directive_id: str):
        super().__init__(f"Directive {directive_id!r} not found in {file}")
        self.file = file
        self.directive_id = directive_id


# ─────────────────────────────────────────────────────────────────────────────
# Data Structures
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class Directive:
    """One author instruction and the code range it governs"""
    file: str
    range: Range
    text: str
    id: Optional[str] = None

    @property
    def prompt(self) -> str:
        return self.text

    def to_dict(self) -> dict:
        return {
            "file": self.file,
            "range": self.range.to_dict(),
            "text": self.text,
            "id": self.id,
        }


def stable_directive_id(file: str, line: int, text: str) -> str:
    """Id for a tagged prompt that carries none; identical input gives an identical id"""
    return str(uuid.uuid5(DIRECTIVE_NAMESPACE, f"{file}:{line}:{text}"))


DirectiveListener = Callable[[str], None]


# ─────────────────────────────────────────────────────────────────────────────
# Directive Indexer
# ─────────────────────────────────────────────────────────────────────────────

class DirectiveIndexer:
    """
    Per-file directive lists, rebuilt from scratch on every scan.

    Usage:
        indexer = DirectiveIndexer(symbol_cache)
        indexer.watch(registry)               # re-scan on open/change/save
        await indexer.index(document)

        texts = indexer.get_all_for_range(path, selection)
    """

    def __init__(self, symbol_cache: SymbolTreeCache):
        self.symbol_cache = symbol_cache
        self._by_file: dict[str, list[Directive]] = {}
        self._listeners: list[DirectiveListener] = []

    # ─────────────────────────────────────────────────────────────────────────
    # Notifications
    # ─────────────────────────────────────────────────────────────────────────

    def on_did_update(self, listener: DirectiveListener) -> Callable[[], None]:
        """Call `listener(file)` after every scan; returns an unsubscribe function"""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _fire(self, file: str):
        for listener in list(self._listeners):
            try:
                listener(file)
            except Exception as e:
                logger.warning(f"DirectiveIndexer: update listener failed: {e}")

    def watch(self, registry: DocumentRegistry) -> Callable[[], None]:
        """Re-scan documents the registry reports as opened, changed or saved"""

        async def on_event(event: DocumentEvent):
            if event.kind in ("open", "change", "save"):
                await self.index(event.document)

        return registry.subscribe(on_event)

    # ─────────────────────────────────────────────────────────────────────────
    # Scanning
    # ─────────────────────────────────────────────────────────────────────────

    async def index(self, document: TextDocument) -> list[Directive]:
        """Scan a document and replace its directive list"""
        # Each previous directive is reused at most once; duplicate ids get fresh objects
        previous: dict[str, Directive] = {}
        for d in self._by_file.get(document.path, []):
            if d.id:
                previous.setdefault(d.id, d)
        lines = document.lines
        directives: list[Directive] = []
        starts: Optional[list[tuple[int, Range]]] = None

        async def bind(line: int) -> Range:
            nonlocal starts
            if starts is None:
                starts = await self._symbol_starts(document)
            for start_line, symbol_range in starts:
                if start_line > line:
                    return symbol_range
            return self._rest_of_file(document, line)

        i = 0
        while i < len(lines):
            text = lines[i]

            match = TAGGED_PROMPT_RE.search(text)
            if match:
                prompt = match.group(1).strip()
                directive_id = match.group(2) or stable_directive_id(document.path, i, prompt)
                rng = await bind(i)
                existing = previous.pop(directive_id, None)
                if existing is not None:
                    existing.text = prompt
                    existing.range = rng
                    directives.append(existing)
                else:
                    directives.append(Directive(file=document.path, range=rng, text=prompt, id=directive_id))
                i += 1
                continue

            match = LINE_DIRECTIVE_RE.search(text)
            if match:
                rng = await bind(i)
                directives.append(Directive(file=document.path, range=rng, text=match.group(1).strip()))
                i += 1
                continue

            if GLOBAL_BLOCK_RE.search(text):
                body: list[str] = []
                j = i + 1
                while j < len(lines) and BLOCK_LINE_RE.match(lines[j]):
                    body.append(BLOCK_LINE_RE.sub("", lines[j], count=1).strip())
                    j += 1
                directives.append(Directive(file=document.path, range=ZERO_RANGE, text="\n".join(body)))
                i = j
                continue

            i += 1

        self._by_file[document.path] = directives
        logger.debug(f"DirectiveIndexer: {document.path} -> {len(directives)} directive(s)")
        self._fire(document.path)
        return directives

    async def _symbol_starts(self, document: TextDocument) -> list[tuple[int, Range]]:
        symbols = await self.symbol_cache.get(document)
        if not symbols:
            return []
        return [(s.range.start.line, document.validate_range(s.range)) for s in flatten_symbols(symbols)]

    @staticmethod
    def _rest_of_file(document: TextDocument, line: int) -> Range:
        last = document.line_count - 1
        end = Position(last, len(document.line_at(last)))
        if line >= last:
            # Nothing follows the directive
            return Range(end, end)
        return Range(Position(line + 1, 0), end)

    # ─────────────────────────────────────────────────────────────────────────
    # Queries
    # ─────────────────────────────────────────────────────────────────────────

    def get_all_for_range(self, file: str, rng: Range) -> list[str]:
        """Texts of directives whose bound range intersects `rng`"""
        return [d.text for d in self._by_file.get(file, []) if d.range.intersects(rng)]

    def get_for_file(self, file: str) -> list[str]:
        return [d.text for d in self._by_file.get(file, [])]

    def get_all_directives(self, file: str) -> list[Directive]:
        return list(self._by_file.get(file, []))

    def get(self, file: str, directive_id: str) -> Directive:
        for directive in self._by_file.get(file, []):
            if directive.id == directive_id:
                return directive
        raise DirectiveNotFoundError(file, directive_id)

    def has_directives(self, file: str) -> bool:
        return bool(self._by_file.get(file))

    def files(self) -> list[str]:
        return [path for path, directives in self._by_file.items() if directives]

    def forget(self, file: str):
        self._by_file.pop(file, None)

    def clear(self):
        self._by_file.clear()
