"""
Context model — the prompt payload assembled for the completion backend.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, Optional

from rhombus.models.document import Range
from rhombus.models.symbols import DocumentSymbol

ContextItemType = Literal["current", "import", "export", "related", "test"]


@dataclass
class ContextItem:
    """One code snippet admitted into the prompt payload"""
    file: str
    range: Range
    content: str
    importance: float                 # 0-1, may exceed 1 while boosts are applied
    type: ContextItemType
    symbols: Optional[list[DocumentSymbol]] = None

    def to_dict(self) -> dict:
        return {
            "file": self.file,
            "range": self.range.to_dict(),
            "content": self.content,
            "importance": self.importance,
            "type": self.type,
            "symbols": [s.to_dict() for s in self.symbols] if self.symbols is not None else None,
        }


@dataclass
class ConversationTurn:
    """A request/response exchange and the files it touched"""
    request: str
    response: str
    files_modified: list[str] = field(default_factory=list)
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_dict(self) -> dict:
        return {
            "request": self.request,
            "response": self.response,
            "files_modified": list(self.files_modified),
            "timestamp": self.timestamp,
        }


@dataclass
class WorkspaceInfo:
    root_path: str = ""
    package_json: Optional[dict[str, Any]] = None
    ts_config: Optional[dict[str, Any]] = None
    git_branch: Optional[str] = None
    recent_files: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "root_path": self.root_path,
            "package_json": self.package_json,
            "ts_config": self.ts_config,
            "git_branch": self.git_branch,
            "recent_files": list(self.recent_files),
        }


@dataclass
class ProjectContext:
    """
    Final, budget-fitted working set for one request.

    Built fresh per request; `items` is ordered by importance after fitting
    and never holds two items for the same file.
    """
    items: list[ContextItem] = field(default_factory=list)
    total_tokens: int = 0
    conversation_history: list[ConversationTurn] = field(default_factory=list)
    workspace_info: WorkspaceInfo = field(default_factory=WorkspaceInfo)
    directives: list[str] = field(default_factory=list)
    truncated: bool = False

    def to_dict(self) -> dict:
        return {
            "items": [item.to_dict() for item in self.items],
            "total_tokens": self.total_tokens,
            "conversation_history": [turn.to_dict() for turn in self.conversation_history],
            "workspace_info": self.workspace_info.to_dict(),
            "directives": list(self.directives),
            "truncated": self.truncated,
        }
