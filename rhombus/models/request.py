from pydantic import BaseModel
from typing import List

from rhombus.models.document import Position, Range


class PositionModel(BaseModel):
    line: int
    character: int = 0

class RangeModel(BaseModel):
    start: PositionModel
    end: PositionModel

    def to_range(self) -> Range:
        return Range(
            Position(self.start.line, self.start.character),
            Position(self.end.line, self.end.character),
        )

    @classmethod
    def from_range(cls, rng: Range) -> "RangeModel":
        return cls(
            start=PositionModel(line=rng.start.line, character=rng.start.character),
            end=PositionModel(line=rng.end.line, character=rng.end.character),
        )

class DocumentRequest(BaseModel):
    path: str
    text: str

class SaveDocumentRequest(BaseModel):
    path: str
    text: str | None = None        # omitted: keep the buffer text

class CloseDocumentRequest(BaseModel):
    path: str

class SelectionRequest(BaseModel):
    path: str
    selection: RangeModel | None = None   # omitted: cursor at 0:0

class ContextRequest(BaseModel):
    intent: str
    target_file: str | None = None

class RecordTurnRequest(BaseModel):
    request: str
    response: str
    files_modified: List[str] = []

class ApplyReplyRequest(BaseModel):
    path: str
    reply: str
    start_line: int
    end_line: int
