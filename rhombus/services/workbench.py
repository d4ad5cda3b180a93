"""
Workbench — wires the services for one workspace.

Everything that holds state (caches, indexes, history) is created here and
owned by one Workbench instance; nothing lives in module globals.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from rhombus.config import Settings
from rhombus.services.context_manager import ContextAssembler
from rhombus.services.dependency_resolver import DependencyResolver
from rhombus.services.directive_indexer import DirectiveIndexer
from rhombus.services.document_registry import DocumentRegistry
from rhombus.services.file_watcher import FileWatcherService
from rhombus.services.memory_service import ConversationLedger
from rhombus.services.reconcile import apply_edit, extract_code_from_response
from rhombus.services.symbol_oracle import SymbolOracle, SymbolTreeCache, TreeSitterSymbolOracle
from rhombus.services.symbol_search import SymbolCrossReference
from rhombus.services.workspace import Workspace

logger = logging.getLogger(__name__)


@dataclass
class Workbench:
    settings: Settings
    registry: DocumentRegistry
    workspace: Workspace
    oracle: SymbolOracle
    symbol_cache: SymbolTreeCache
    indexer: DirectiveIndexer
    resolver: DependencyResolver
    search: SymbolCrossReference
    ledger: ConversationLedger
    assembler: ContextAssembler
    watcher: FileWatcherService
    _unsubscribe: list[Callable[[], None]] = field(default_factory=list)

    @classmethod
    def create(cls, settings: Settings, oracle: Optional[SymbolOracle] = None) -> "Workbench":
        registry = DocumentRegistry(root=settings.WORKSPACE_ROOT)
        workspace = Workspace(settings.WORKSPACE_ROOT, registry)
        oracle = oracle if oracle is not None else TreeSitterSymbolOracle()
        symbol_cache = SymbolTreeCache(oracle)
        indexer = DirectiveIndexer(symbol_cache)
        resolver = DependencyResolver(workspace)
        search = SymbolCrossReference(workspace, oracle, symbol_cache)
        ledger = ConversationLedger(max_turns=settings.HISTORY_LIMIT)
        assembler = ContextAssembler(
            registry,
            workspace,
            indexer,
            resolver,
            search,
            ledger,
            symbol_cache,
            max_tokens=settings.MAX_TOKENS,
            history_turns=settings.HISTORY_CONTEXT_TURNS,
            search_timeout=settings.SEARCH_TIMEOUT_SECONDS,
        )
        watcher = FileWatcherService(
            symbol_cache,
            indexer,
            registry,
            symbol_index=oracle if isinstance(oracle, TreeSitterSymbolOracle) else None,
        )

        workbench = cls(
            settings=settings,
            registry=registry,
            workspace=workspace,
            oracle=oracle,
            symbol_cache=symbol_cache,
            indexer=indexer,
            resolver=resolver,
            search=search,
            ledger=ledger,
            assembler=assembler,
            watcher=watcher,
        )
        workbench._unsubscribe.append(indexer.watch(registry))
        return workbench

    async def start(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        """Index the workspace and start watching it"""
        loop = loop or asyncio.get_running_loop()

        if self.settings.INDEX_ON_STARTUP and isinstance(self.oracle, TreeSitterSymbolOracle):
            count = await asyncio.to_thread(
                self.oracle.index_project, self.workspace.root, self.settings.MAX_INDEXED_FILES
            )
            logger.info(f"Workbench: indexed {count} files under {self.workspace.root}")

        if self.settings.WATCH_FILES:
            self.watcher.start_watching(self.workspace.root, loop)

    async def apply_reply(self, path: str, reply: str, start_line: int, end_line: int) -> dict:
        """
        Splice the code of a completion reply over lines [start_line, end_line).

        An open buffer is updated through the registry (which re-scans its
        directives); a file only on disk is left untouched and the new text
        is just returned. Raises OSError when the file cannot be read.
        """
        path = self.workspace.resolve_path(path)
        document = await self.workspace.open_document(path)
        code, explanation = extract_code_from_response(reply)
        if code is None:
            return {"path": path, "applied": False, "text": document.text, "code": None, "explanation": explanation}

        text = apply_edit(document, start_line, end_line, code)
        if self.registry.is_open(path):
            await self.registry.change(path, text)
        logger.info(f"Workbench: applied reply to {path} lines {start_line}-{end_line}")
        return {"path": path, "applied": True, "text": text, "code": code, "explanation": explanation}

    def clear_caches(self):
        self.assembler.clear_cache()

    def shutdown(self):
        self.assembler.cancel()
        self.watcher.stop_watching()
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe.clear()
        logger.info("Workbench: shut down")

    def status(self) -> dict:
        summary = self.oracle.get_project_summary() if isinstance(self.oracle, TreeSitterSymbolOracle) else None
        return {
            "workspace_root": self.workspace.root,
            "documents": self.registry.stats(),
            "directive_files": self.indexer.files(),
            "history_turns": len(self.ledger),
            "cached_symbol_trees": len(self.symbol_cache),
            "dependency_graph_size": len(self.resolver),
            "symbol_index": summary,
            "watcher": self.watcher.get_stats().to_dict(),
        }
