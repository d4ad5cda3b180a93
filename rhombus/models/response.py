from pydantic import BaseModel
from typing import List

from rhombus.models.request import RangeModel
from rhombus.services.directive_indexer import Directive


class DirectiveModel(BaseModel):
    file: str
    range: RangeModel
    text: str
    id: str | None = None

    @classmethod
    def from_directive(cls, directive: Directive) -> "DirectiveModel":
        return cls(
            file=directive.file,
            range=RangeModel.from_range(directive.range),
            text=directive.text,
            id=directive.id,
        )

class DocumentResponse(BaseModel):
    path: str
    version: int
    directives: List[DirectiveModel] = []

class ContextResponse(BaseModel):
    context: dict
    prompt: str

class TurnResponse(BaseModel):
    request: str
    response: str
    files_modified: List[str]
    timestamp: str

class SymbolHit(BaseModel):
    name: str
    file: str
    range: RangeModel
    kind: str

class EditResponse(BaseModel):
    path: str
    applied: bool
    text: str
    code: str | None = None
    explanation: str = ""
