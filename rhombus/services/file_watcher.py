"""
File Watcher Service — Keeps symbol and directive indexes in step with disk.

Provides:
- File system watching for source files (watchdog)
- Debounced change batches
- Re-indexing in the symbol oracle and symbol tree cache invalidation
- Re-scanning directives of files that are not open in the editor

Watchdog delivers events on its own thread; every change is handed to
the service event loop before any index is touched.
"""
import os
import asyncio
import concurrent.futures
import logging
import threading
from pathlib import Path
from datetime import datetime
from typing import Callable, Optional
from dataclasses import dataclass, field

from watchdog.observers import Observer
from watchdog.events import FileSystemEventHandler, FileSystemEvent

from rhombus.models.document import TextDocument
from rhombus.services.directive_indexer import DirectiveIndexer
from rhombus.services.document_registry import DocumentRegistry
from rhombus.services.symbol_oracle import SymbolTreeCache, TreeSitterSymbolOracle
from rhombus.services.workspace import SKIP_DIRS

logger = logging.getLogger(__name__)

CODE_EXTENSIONS = {".py", ".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs", ".sql", ".lua"}


# ─────────────────────────────────────────────────────────────────────────────
# Data Structures
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class FileChange:
    """Represents a file change event"""
    path: str
    event_type: str  # "created", "modified", "deleted", "moved"
    timestamp: datetime = field(default_factory=datetime.now)
    old_path: Optional[str] = None  # For moved files


@dataclass
class WatcherStats:
    files_updated: int = 0
    files_deleted: int = 0
    directive_rescans: int = 0
    last_update: Optional[datetime] = None
    is_watching: bool = False
    watched_directories: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "files_updated": self.files_updated,
            "files_deleted": self.files_deleted,
            "directive_rescans": self.directive_rescans,
            "last_update": self.last_update.isoformat() if self.last_update else None,
            "is_watching": self.is_watching,
            "watched_directories": list(self.watched_directories),
        }


def should_process(path: str) -> bool:
    """Source files outside dependency/build directories"""
    path_obj = Path(path)
    if path_obj.suffix.lower() not in CODE_EXTENSIONS:
        return False
    return not any(part in SKIP_DIRS for part in path_obj.parts)


# ─────────────────────────────────────────────────────────────────────────────
# File Change Handler
# ─────────────────────────────────────────────────────────────────────────────

class CodeFileHandler(FileSystemEventHandler):
    """Collects source file events and flushes them after a quiet period"""

    def __init__(self, on_change: Callable[[FileChange], None], debounce_delay: float = 0.5):
        super().__init__()
        self.on_change = on_change
        self._pending_changes: dict[str, FileChange] = {}
        self._debounce_timer: Optional[threading.Timer] = None
        self._debounce_delay = debounce_delay
        self._lock = threading.Lock()

    def _queue_change(self, change: FileChange):
        with self._lock:
            # Latest event per file wins
            self._pending_changes[change.path] = change

            if self._debounce_timer:
                self._debounce_timer.cancel()

            self._debounce_timer = threading.Timer(self._debounce_delay, self._flush_changes)
            self._debounce_timer.daemon = True
            self._debounce_timer.start()

    def _flush_changes(self):
        with self._lock:
            changes = list(self._pending_changes.values())
            self._pending_changes.clear()

        for change in changes:
            try:
                self.on_change(change)
            except Exception as e:
                logger.error(f"FileWatcher: error dispatching change {change.path}: {e}")

    def cancel(self):
        with self._lock:
            if self._debounce_timer:
                self._debounce_timer.cancel()
            self._pending_changes.clear()

    def on_created(self, event: FileSystemEvent):
        if not event.is_directory and should_process(event.src_path):
            self._queue_change(FileChange(path=event.src_path, event_type="created"))

    def on_modified(self, event: FileSystemEvent):
        if not event.is_directory and should_process(event.src_path):
            self._queue_change(FileChange(path=event.src_path, event_type="modified"))

    def on_deleted(self, event: FileSystemEvent):
        if not event.is_directory and should_process(event.src_path):
            self._queue_change(FileChange(path=event.src_path, event_type="deleted"))

    def on_moved(self, event: FileSystemEvent):
        if not event.is_directory and should_process(event.dest_path):
            self._queue_change(FileChange(
                path=event.dest_path,
                event_type="moved",
                old_path=event.src_path,
            ))


# ─────────────────────────────────────────────────────────────────────────────
# File Watcher Service
# ─────────────────────────────────────────────────────────────────────────────

class FileWatcherService:
    """
    Usage:
        watcher = FileWatcherService(symbol_cache, indexer, registry, oracle)
        watcher.start_watching("/path/to/project", asyncio.get_running_loop())

        # Later...
        watcher.stop_watching()
    """

    def __init__(
        self,
        symbol_cache: SymbolTreeCache,
        indexer: DirectiveIndexer,
        registry: DocumentRegistry,
        symbol_index: Optional[TreeSitterSymbolOracle] = None,
        debounce_delay: float = 0.5,
    ):
        self.symbol_cache = symbol_cache
        self.indexer = indexer
        self.registry = registry
        self.symbol_index = symbol_index
        self.debounce_delay = debounce_delay
        self._observer: Optional[Observer] = None
        self._handler: Optional[CodeFileHandler] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._stats = WatcherStats()

    def _dispatch(self, change: FileChange) -> Optional[concurrent.futures.Future]:
        """Runs on the debounce timer thread"""
        if self._loop is None or self._loop.is_closed():
            logger.debug(f"FileWatcher: no event loop, dropping change for {change.path}")
            return None
        future = asyncio.run_coroutine_threadsafe(self.apply_change(change), self._loop)
        future.add_done_callback(lambda f: self._log_failure(change, f))
        return future

    @staticmethod
    def _log_failure(change: FileChange, future: concurrent.futures.Future):
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error(f"FileWatcher: failed to apply {change.event_type} for {change.path}: {error}")

    async def apply_change(self, change: FileChange):
        """Bring indexes up to date with one on-disk change"""
        logger.info(f"FileWatcher: {change.event_type} - {change.path}")

        if change.event_type == "moved" and change.old_path:
            self._forget(change.old_path)

        if change.event_type == "deleted":
            self._forget(change.path)
            self._stats.files_deleted += 1
        else:
            self.symbol_cache.invalidate(change.path)
            if self.symbol_index is not None:
                try:
                    await asyncio.to_thread(self.symbol_index.index_file, change.path)
                except Exception as e:
                    logger.error(f"FileWatcher: failed to index {change.path}: {e}")
            self._stats.files_updated += 1
            await self._rescan_directives(change.path)

        self._stats.last_update = datetime.now()

    def _forget(self, path: str):
        self.symbol_cache.invalidate(path)
        if self.symbol_index is not None:
            self.symbol_index.remove_file(path)
        if not self.registry.is_open(path):
            self.indexer.forget(path)

    async def _rescan_directives(self, path: str):
        # Open buffers are re-scanned by editor events and may hold unsaved text
        if self.registry.is_open(path) or not self.indexer.has_directives(path):
            return
        try:
            with open(path, "r", encoding="utf-8", errors="replace") as f:
                text = f.read()
        except OSError as e:
            logger.warning(f"FileWatcher: cannot re-read {path}: {e}")
            return
        await self.indexer.index(TextDocument(path=path, text=text))
        self._stats.directive_rescans += 1

    def start_watching(self, directory: str, loop: asyncio.AbstractEventLoop) -> bool:
        """
        Start watching a directory for file changes.

        Returns:
            True if watching started successfully
        """
        directory = os.path.abspath(directory)

        if not os.path.isdir(directory):
            logger.error(f"FileWatcher: directory not found: {directory}")
            return False

        if directory in self._stats.watched_directories:
            logger.info(f"FileWatcher: already watching {directory}")
            return True

        self._loop = loop
        if self._observer is None:
            self._observer = Observer()
            self._handler = CodeFileHandler(self._dispatch, self.debounce_delay)

        self._observer.schedule(self._handler, directory, recursive=True)
        self._stats.watched_directories.append(directory)

        if not self._observer.is_alive():
            self._observer.start()

        self._stats.is_watching = True
        logger.info(f"FileWatcher: started watching {directory}")
        return True

    def stop_watching(self):
        if self._observer is None:
            return

        if self._handler:
            self._handler.cancel()
        self._observer.stop()
        self._observer.join(timeout=5)
        self._observer = None
        self._handler = None
        self._stats.watched_directories = []
        self._stats.is_watching = False
        logger.info("FileWatcher: stopped all watching")

    def get_stats(self) -> WatcherStats:
        return self._stats

    def is_watching(self) -> bool:
        return self._stats.is_watching
