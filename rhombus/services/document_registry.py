"""
Document Registry — Open editor buffers pushed by the frontend.

The editor sends open/change/save/close events for its tabs together with
the current buffer text; the registry keeps the latest text per path and
notifies subscribers (the directive indexer) about every event.

It also tracks the active editor and its selection, which is what the
context assembler treats as "the current code".
"""
import os
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Literal, Optional

from rhombus.models.document import Position, Range, TextDocument

logger = logging.getLogger(__name__)

DocumentEventKind = Literal["open", "change", "save", "close"]


@dataclass
class DocumentEvent:
    """A lifecycle event for one editor buffer"""
    kind: DocumentEventKind
    document: TextDocument
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class EditorState:
    """The focused editor: which file and what is selected"""
    path: str
    selection: Range = field(default_factory=lambda: Range(Position(0, 0), Position(0, 0)))

    @property
    def is_empty(self) -> bool:
        return self.selection.is_empty


DocumentListener = Callable[[DocumentEvent], Awaitable[None]]


class DocumentRegistry:
    """
    In-memory store of documents opened in the editor.

    Documents are indexed by absolute, normalised path (relative paths are
    taken from `root`); every open/change/save bumps the document version
    so downstream caches can key on (path, version).
    """

    def __init__(self, max_recent: int = 20, root: Optional[str] = None):
        self.root = os.path.abspath(root) if root else None
        self._by_path: Dict[str, TextDocument] = {}
        self._listeners: List[DocumentListener] = []
        self._recent: deque[str] = deque(maxlen=max_recent)
        self._active: Optional[EditorState] = None

    def resolve_path(self, path: str) -> str:
        if self.root:
            return os.path.normpath(os.path.join(self.root, path))
        return os.path.abspath(path)

    def subscribe(self, listener: DocumentListener) -> Callable[[], None]:
        """Register an async listener; returns a function that removes it"""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def _emit(self, kind: DocumentEventKind, document: TextDocument):
        event = DocumentEvent(kind=kind, document=document)
        for listener in list(self._listeners):
            await listener(event)

    def _store(self, path: str, text: str) -> TextDocument:
        existing = self._by_path.get(path)
        version = existing.version + 1 if existing else 1
        document = TextDocument(path=path, text=text, version=version)
        self._by_path[path] = document
        return document

    def _touch(self, path: str):
        if path in self._recent:
            self._recent.remove(path)
        self._recent.appendleft(path)

    async def open(self, path: str, text: str) -> TextDocument:
        """Register a document when its tab is opened"""
        path = self.resolve_path(path)
        document = self._store(path, text)
        self._touch(path)
        logger.info(f"DocumentRegistry: opened {path} ({len(text)} chars)")
        await self._emit("open", document)
        return document

    async def change(self, path: str, text: str) -> TextDocument:
        """Replace the buffer text after an edit"""
        path = self.resolve_path(path)
        document = self._store(path, text)
        logger.debug(f"DocumentRegistry: changed {path} (v{document.version})")
        await self._emit("change", document)
        return document

    async def save(self, path: str, text: Optional[str] = None) -> TextDocument:
        """Mark a document as saved, optionally with its final text"""
        path = self.resolve_path(path)
        existing = self._by_path.get(path)
        if text is None and existing is None:
            raise KeyError(f"Document {path} is not open")
        document = self._store(path, text if text is not None else existing.text)
        logger.debug(f"DocumentRegistry: saved {path}")
        await self._emit("save", document)
        return document

    async def close(self, path: str) -> bool:
        """Forget a document when its tab is closed"""
        path = self.resolve_path(path)
        document = self._by_path.pop(path, None)
        if document is None:
            return False
        if self._active and self._active.path == path:
            self._active = None
        logger.info(f"DocumentRegistry: closed {path}")
        await self._emit("close", document)
        return True

    def get(self, path: str) -> Optional[TextDocument]:
        return self._by_path.get(self.resolve_path(path))

    def is_open(self, path: str) -> bool:
        return self.resolve_path(path) in self._by_path

    def get_all(self) -> List[TextDocument]:
        return list(self._by_path.values())

    # ─────────────────────────────────────────────────────────────────────────
    # Active editor
    # ─────────────────────────────────────────────────────────────────────────

    def set_active_editor(self, path: str, selection: Optional[Range] = None) -> EditorState:
        """Record focus and selection; an omitted selection is an empty cursor at 0:0"""
        path = self.resolve_path(path)
        state = EditorState(path=path, selection=selection or Range(Position(0, 0), Position(0, 0)))
        self._active = state
        self._touch(path)
        return state

    @property
    def active_editor(self) -> Optional[EditorState]:
        return self._active

    def recent_paths(self) -> List[str]:
        """Most recently opened or focused paths first"""
        return list(self._recent)

    def clear(self):
        self._by_path.clear()
        self._recent.clear()
        self._active = None
        logger.info("DocumentRegistry: cleared all documents")

    def stats(self) -> dict:
        return {
            "total_documents": len(self._by_path),
            "total_size": sum(len(d.text) for d in self._by_path.values()),
            "paths": list(self._by_path.keys()),
            "active": self._active.path if self._active else None,
        }
