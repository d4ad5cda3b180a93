"""
Context Assembler — Relevance-ranked, token-budgeted working set for one request.

Provides:
- Current-code resolution (selection, enclosing symbol, or whole file)
- Definition/reference expansion through cross-reference search
- Related files: dependencies, importers, tests, history, similar names
- Importance scoring, de-duplication and budget fitting with truncation
- Prompt rendering of the final ProjectContext

The result never holds two items for the same file, and its token total
is recomputed from the admitted items.
"""
import math
import logging
import os
from dataclasses import replace
from typing import Optional

from rhombus.models.context import ContextItem, ProjectContext
from rhombus.models.document import Position, Range, TextDocument
from rhombus.models.symbols import DocumentSymbol, innermost_containing
from rhombus.services.dependency_resolver import DependencyResolver
from rhombus.services.directive_indexer import DirectiveIndexer
from rhombus.services.document_registry import DocumentRegistry
from rhombus.services.memory_service import ConversationLedger
from rhombus.services.symbol_oracle import SymbolTreeCache
from rhombus.services.symbol_search import SymbolCrossReference
from rhombus.services.workspace import Deadline, Workspace, glob_escape

logger = logging.getLogger(__name__)

RELATED_FILES_LIMIT = 10
IMPORTER_SCAN_LIMIT = 100
TEST_FILES_PER_PATTERN = 5
SIMILAR_FILES_LIMIT = 10
REFERENCES_ADMITTED = 3
RECENT_FILES_ADMITTED = 3

DEFINITION_BOOST = 0.3
REFERENCE_BOOST = 0.1
RECENT_FILE_FACTOR = 0.7
ADMIT_THRESHOLD = 0.3
TRUNCATE_THRESHOLD = 0.8
MIN_TRUNCATION_TOKENS = 100

SOURCE_GLOB = "**/*.{ts,tsx,js,jsx,py}"

FENCE_LANGUAGES = {
    ".py": "python",
    ".ts": "typescript",
    ".tsx": "tsx",
    ".js": "javascript",
    ".jsx": "jsx",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".json": "json",
    ".sql": "sql",
    ".lua": "lua",
}

HASH_COMMENT_EXTENSIONS = {".py", ".sh", ".rb", ".yaml", ".yml", ".toml"}
DASH_COMMENT_EXTENSIONS = {".sql", ".lua", ".hs"}


# ─────────────────────────────────────────────────────────────────────────────
# Token Estimation & Truncation
# ─────────────────────────────────────────────────────────────────────────────

def estimate_tokens(text: str) -> int:
    """~4 characters per token, rounded up"""
    return math.ceil(len(text) / 4)


def comment_prefix(file: str) -> str:
    ext = os.path.splitext(file)[1].lower()
    if ext in HASH_COMMENT_EXTENSIONS:
        return "#"
    if ext in DASH_COMMENT_EXTENSIONS:
        return "--"
    return "//"


def _cut(lines: list[str], keep_start: int, keep_end: int, marker: str) -> str:
    kept = lines[:keep_start] + [marker]
    if keep_end > 0:
        kept += lines[-keep_end:]
    return "\n".join(kept)


def truncate_item(item: ContextItem, max_tokens: int) -> Optional[ContextItem]:
    """
    Keep the head and tail of an item within an importance-scaled line quota.

    The first 60% of the quota and the last 40% survive; the middle is
    replaced by one marker line. When long lines still overflow
    `max_tokens`, lines are dropped from the tail and head (keeping the
    60/40 balance) and finally the one remaining line is cut by
    characters, so the result always fits.

    Returns None when `max_tokens` is too small to be worth it, and the
    item itself when it already fits both the quota and `max_tokens`.
    """
    if max_tokens < MIN_TRUNCATION_TOKENS:
        return None

    lines = item.content.split("\n")
    quota = math.floor(max_tokens / 10 * min(item.importance, 1.0))
    if len(lines) <= quota and estimate_tokens(item.content) <= max_tokens:
        return item

    quota = min(quota, len(lines))
    keep_start = max(math.floor(quota * 0.6), 1)
    keep_end = math.floor(quota * 0.4)
    marker = f"{comment_prefix(item.file)} ... (content truncated) ..."
    content = _cut(lines, keep_start, keep_end, marker)

    while estimate_tokens(content) > max_tokens and keep_start + keep_end > 1:
        if keep_end > 0 and keep_end * 3 >= keep_start * 2:
            keep_end -= 1
        else:
            keep_start -= 1
        content = _cut(lines, keep_start, keep_end, marker)

    if estimate_tokens(content) > max_tokens:
        # A single line is longer than the whole budget
        room = max_tokens * 4 - len(marker) - 1
        if keep_start:
            content = f"{lines[0][:room]}\n{marker}"
        else:
            content = f"{marker}\n{lines[-1][-room:]}"

    return replace(item, content=content)


def fit_to_budget(items: list[ContextItem], max_tokens: int) -> tuple[list[ContextItem], bool]:
    """
    Greedy importance-first selection under `max_tokens`.

    An item that does not fit is dropped, unless its importance is above
    0.8: then a truncated copy cut down to the remaining budget is taken
    and selection stops. Only a remaining budget below the truncation
    minimum drops such an item.

    Returns:
        (accepted items, whether one of them was truncated)
    """
    ordered = sorted(items, key=lambda i: i.importance, reverse=True)
    accepted: list[ContextItem] = []
    used = 0

    for item in ordered:
        tokens = estimate_tokens(item.content)
        if used + tokens <= max_tokens:
            accepted.append(item)
            used += tokens
            continue

        if item.importance > TRUNCATE_THRESHOLD:
            remaining = max_tokens - used
            truncated = truncate_item(item, remaining)
            if truncated is not None and estimate_tokens(truncated.content) <= remaining:
                accepted.append(truncated)
                return accepted, True
            logger.debug(f"ContextAssembler: could not truncate {item.file} into {remaining} tokens")

    return accepted, False


def is_test_path(path: str) -> bool:
    """foo.test.ts, foo.spec.js, test_foo.py, foo_test.go"""
    name = os.path.basename(path)
    stem = os.path.splitext(name)[0]
    return ".test." in name or ".spec." in name or name.startswith("test_") or stem.endswith("_test")


# ─────────────────────────────────────────────────────────────────────────────
# Prompt Rendering
# ─────────────────────────────────────────────────────────────────────────────

def render_prompt(context: ProjectContext, intent: str) -> str:
    """Flatten a ProjectContext into the text handed to the completion backend"""
    parts = [f"## Request\n{intent}"]

    if context.directives:
        parts.append("## Directives\n" + "\n".join(f"- {d}" for d in context.directives))

    for item in context.items:
        ext = os.path.splitext(item.file)[1].lower()
        language = FENCE_LANGUAGES.get(ext, "")
        header = f"[{item.type.upper()}] {item.file} (lines {item.range.start.line + 1}-{item.range.end.line + 1})"
        parts.append(f"{header}\n```{language}\n{item.content}\n```")

    if context.conversation_history:
        turns = [
            f"User: {turn.request}\nAssistant: {turn.response}"
            for turn in context.conversation_history
        ]
        parts.append("## Recent conversation\n" + "\n\n".join(turns))

    return "\n\n".join(parts)


# ─────────────────────────────────────────────────────────────────────────────
# Context Assembler
# ─────────────────────────────────────────────────────────────────────────────

class ContextAssembler:
    """
    Builds a ProjectContext from the editor state and the codebase.

    Usage:
        assembler = ContextAssembler(registry, workspace, indexer, resolver,
                                     search, ledger, symbol_cache)
        context = await assembler.assemble("add error handling", "/proj/src/a.ts")
        prompt = render_prompt(context, "add error handling")

    All workspace scanning for one `assemble` call shares a single deadline;
    `cancel()` stops the scan in flight.
    """

    def __init__(
        self,
        registry: DocumentRegistry,
        workspace: Workspace,
        indexer: DirectiveIndexer,
        resolver: DependencyResolver,
        search: SymbolCrossReference,
        ledger: ConversationLedger,
        symbol_cache: SymbolTreeCache,
        max_tokens: int = 8000,
        history_turns: int = 3,
        search_timeout: Optional[float] = 5.0,
    ):
        self.registry = registry
        self.workspace = workspace
        self.indexer = indexer
        self.resolver = resolver
        self.search = search
        self.ledger = ledger
        self.symbol_cache = symbol_cache
        self.max_tokens = max_tokens
        self.history_turns = history_turns
        self.search_timeout = search_timeout
        self._deadline: Optional[Deadline] = None

    async def assemble(self, intent: str, target_file: Optional[str] = None) -> ProjectContext:
        if target_file:
            target_file = self.workspace.resolve_path(target_file)
        deadline = Deadline(self.search_timeout)
        self._deadline = deadline

        items: list[ContextItem] = []

        # 1. Current code
        current = await self.current_item(target_file)
        if current:
            items.append(current)

            # 2. Definitions and references of what the current code uses
            result = await self.search.find_related(current, deadline)

            for definition in result.definitions:
                item = await self.item_for_range(definition.file, definition.range, intent)
                if item and self._should_admit(item, items):
                    item.type = "import"
                    item.importance += DEFINITION_BOOST
                    items.append(item)

            for reference in result.references[:REFERENCES_ADMITTED]:
                item = await self.item_for_range(reference.file, reference.range, intent)
                if item and self._should_admit(item, items):
                    item.type = "related"
                    item.importance += REFERENCE_BOOST
                    items.append(item)

        # 3-4. Related files
        related = await self.find_related_files(current.file if current else None, intent, deadline)
        for file_path in related:
            item = await self.file_item(file_path, intent)
            if item and self._should_admit(item, items):
                items.append(item)

        # 5. Recently modified files from the conversation
        for file_path in self.ledger.recently_modified_files()[-RECENT_FILES_ADMITTED:]:
            file_path = self.workspace.resolve_path(file_path)
            if any(existing.file == file_path for existing in items):
                continue
            item = await self.file_item(file_path, "")
            if item:
                item.importance *= RECENT_FILE_FACTOR
                items.append(item)

        # 6. Budget
        fitted, truncated = fit_to_budget(items, self.max_tokens)

        # 7. Totals
        context = ProjectContext(
            items=fitted,
            total_tokens=sum(estimate_tokens(item.content) for item in fitted),
            conversation_history=self.ledger.recent_turns(self.history_turns),
            workspace_info=await self.workspace.workspace_info(self.registry.recent_paths()),
            directives=self.indexer.get_all_for_range(current.file, current.range) if current else [],
            truncated=truncated,
        )

        if self._deadline is deadline:
            self._deadline = None

        logger.info(
            f"ContextAssembler: {len(fitted)}/{len(items)} items, {context.total_tokens} tokens"
            f"{' (truncated)' if truncated else ''}"
        )
        return context

    def cancel(self):
        """Expire the deadline of the assembly in flight, if any"""
        if self._deadline:
            self._deadline.cancel()

    def clear_cache(self):
        self.symbol_cache.clear()
        self.resolver.clear_cache()
        self.search.clear_cache()
        logger.info("ContextAssembler: caches cleared")

    # ─────────────────────────────────────────────────────────────────────────
    # Items
    # ─────────────────────────────────────────────────────────────────────────

    async def _open(self, file_path: str) -> Optional[TextDocument]:
        try:
            return await self.workspace.open_document(file_path)
        except Exception as e:
            logger.warning(f"ContextAssembler: cannot read {file_path}: {e}")
            return None

    @staticmethod
    def _symbols_in(symbols: Optional[list[DocumentSymbol]], rng: Range) -> Optional[list[DocumentSymbol]]:
        if symbols is None:
            return None
        return [s for s in symbols if s.range.intersects(rng)]

    async def current_item(self, target_file: Optional[str] = None) -> Optional[ContextItem]:
        """
        The code the user is working on.

        A non-empty selection wins; otherwise the innermost symbol around
        the cursor; otherwise the whole file. A target file with no focused
        editor is taken whole.
        """
        editor = self.registry.active_editor
        file_path = target_file or (editor.path if editor else None)
        if not file_path:
            return None
        file_path = self.workspace.resolve_path(file_path)

        document = await self._open(file_path)
        if document is None:
            return None

        symbols = await self.symbol_cache.get(document)
        rng: Optional[Range] = None

        if editor and editor.path == file_path:
            if not editor.is_empty:
                rng = document.validate_range(editor.selection)
            else:
                enclosing = innermost_containing(symbols or [], editor.selection.start)
                if enclosing:
                    rng = document.validate_range(enclosing.range)

        if rng is None:
            rng = document.full_range()

        return ContextItem(
            file=file_path,
            range=rng,
            content=document.get_text(rng),
            importance=1.0,
            type="current",
            symbols=self._symbols_in(symbols, rng),
        )

    async def item_for_range(self, file_path: str, rng: Range, intent: str) -> Optional[ContextItem]:
        """A snippet around `rng`, widened to the innermost enclosing symbol"""
        file_path = self.workspace.resolve_path(file_path)
        document = await self._open(file_path)
        if document is None:
            return None

        symbols = await self.symbol_cache.get(document)
        rng = document.validate_range(rng)
        enclosing = innermost_containing(symbols or [], rng)
        if enclosing:
            expanded = document.validate_range(enclosing.range)
        elif rng.is_empty:
            # Text hits are zero-length; take their whole line
            expanded = Range(Position(rng.start.line, 0), Position(rng.start.line, len(document.line_at(rng.start.line))))
        else:
            expanded = rng

        content = document.get_text(expanded)
        importance = 0.6
        if intent and intent.lower() in content.lower():
            importance += 0.2
        if self.indexer.get_all_for_range(file_path, expanded):
            importance += 0.2

        return ContextItem(
            file=file_path,
            range=expanded,
            content=content,
            importance=importance,
            type="related",
            symbols=self._symbols_in(symbols, expanded),
        )

    async def file_item(self, file_path: str, intent: str) -> Optional[ContextItem]:
        """A whole-file item scored by intent match and directives"""
        file_path = self.workspace.resolve_path(file_path)
        document = await self._open(file_path)
        if document is None:
            return None

        importance = 0.5
        if intent and intent.lower() in document.text.lower():
            importance += 0.3
        if self.indexer.get_for_file(file_path):
            importance += 0.2

        return ContextItem(
            file=file_path,
            range=document.full_range(),
            content=document.text,
            importance=importance,
            type="test" if is_test_path(file_path) else "related",
            symbols=await self.symbol_cache.get(document),
        )

    @staticmethod
    def _should_admit(item: ContextItem, items: list[ContextItem]) -> bool:
        if any(existing.file == item.file for existing in items):
            return False
        if item.importance > ADMIT_THRESHOLD:
            return True
        return item.type == "test" and any("test" in existing.content.lower() for existing in items)

    # ─────────────────────────────────────────────────────────────────────────
    # Related files
    # ─────────────────────────────────────────────────────────────────────────

    async def find_related_files(
        self,
        current_file: Optional[str],
        intent: str,
        deadline: Optional[Deadline] = None,
    ) -> list[str]:
        related: list[str] = []

        def add(paths: list[str]):
            for path in paths:
                path = self.workspace.resolve_path(path)
                if path != current_file and path not in related:
                    related.append(path)

        if current_file:
            add(await self.resolver.dependencies_of(current_file))
            add(await self.find_importers(current_file, deadline))
            if "test" in intent.lower():
                add(await self.find_test_files(current_file, deadline))

        add(self.ledger.recently_modified_files(10))

        if current_file:
            add(await self.find_similar_files(current_file, deadline))

        return related[:RELATED_FILES_LIMIT]

    async def _find(self, pattern: str, limit: int, deadline: Optional[Deadline]) -> list[str]:
        try:
            return await self.workspace.find_files(pattern, None, limit, deadline)
        except Exception as e:
            logger.warning(f"ContextAssembler: file search {pattern!r} failed: {e}")
            return []

    async def find_importers(self, file_path: str, deadline: Optional[Deadline] = None) -> list[str]:
        """Files whose text mentions this file's relative path or base name"""
        relative = self.workspace.as_relative_path(file_path)
        base = os.path.splitext(os.path.basename(file_path))[0]
        importers: list[str] = []

        for candidate in await self._find(SOURCE_GLOB, IMPORTER_SCAN_LIMIT, deadline):
            if candidate == file_path:
                continue
            if deadline and deadline.expired:
                break
            try:
                content = await self.workspace.read_text(candidate)
            except Exception as e:
                logger.debug(f"ContextAssembler: skipping unreadable {candidate}: {e}")
                continue
            if relative in content or base in content:
                importers.append(candidate)

        return importers

    async def find_test_files(self, file_path: str, deadline: Optional[Deadline] = None) -> list[str]:
        base = glob_escape(os.path.splitext(os.path.basename(file_path))[0])
        patterns = [
            f"**/{base}.test.*",
            f"**/{base}.spec.*",
            f"**/*test*/**/{base}.*",
            f"**/*spec*/**/{base}.*",
            f"**/test_{base}.py",
        ]
        found: list[str] = []
        for pattern in patterns:
            for path in await self._find(pattern, TEST_FILES_PER_PATTERN, deadline):
                if path not in found:
                    found.append(path)
        return found

    async def find_similar_files(self, file_path: str, deadline: Optional[Deadline] = None) -> list[str]:
        base = glob_escape(os.path.splitext(os.path.basename(file_path))[0])
        return [
            path for path in await self._find(f"**/*{base}*", SIMILAR_FILES_LIMIT, deadline)
            if path != file_path
        ]
