"""
Websocket protocol for `/ws/editor`.

Both directions are closed unions tagged by `type`; anything else is
rejected at parse time.
"""
from typing import Annotated, List, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

from rhombus.models.request import RangeModel
from rhombus.models.response import DirectiveModel


# ─────────────────────────────────────────────────────────────────────────────
# Client -> server
# ─────────────────────────────────────────────────────────────────────────────

class OpenDocumentMessage(BaseModel):
    type: Literal["openDocument"] = "openDocument"
    path: str
    text: str

class ChangeDocumentMessage(BaseModel):
    type: Literal["changeDocument"] = "changeDocument"
    path: str
    text: str

class SaveDocumentMessage(BaseModel):
    type: Literal["saveDocument"] = "saveDocument"
    path: str
    text: str | None = None

class CloseDocumentMessage(BaseModel):
    type: Literal["closeDocument"] = "closeDocument"
    path: str

class SetSelectionMessage(BaseModel):
    type: Literal["setSelection"] = "setSelection"
    path: str
    selection: RangeModel | None = None

class CollectContextMessage(BaseModel):
    type: Literal["collectContext"] = "collectContext"
    intent: str
    target_file: str | None = None

class RecordTurnMessage(BaseModel):
    type: Literal["recordTurn"] = "recordTurn"
    request: str
    response: str
    files_modified: List[str] = []

class ListDirectivesMessage(BaseModel):
    type: Literal["listDirectives"] = "listDirectives"
    path: str

class GetDirectiveMessage(BaseModel):
    type: Literal["getDirective"] = "getDirective"
    path: str
    id: str

class ApplyReplyMessage(BaseModel):
    type: Literal["applyReply"] = "applyReply"
    path: str
    reply: str
    start_line: int
    end_line: int

class PingMessage(BaseModel):
    type: Literal["ping"] = "ping"


ClientMessage = Annotated[
    Union[
        OpenDocumentMessage,
        ChangeDocumentMessage,
        SaveDocumentMessage,
        CloseDocumentMessage,
        SetSelectionMessage,
        CollectContextMessage,
        RecordTurnMessage,
        ListDirectivesMessage,
        GetDirectiveMessage,
        ApplyReplyMessage,
        PingMessage,
    ],
    Field(discriminator="type"),
]

client_message_adapter = TypeAdapter(ClientMessage)


# ─────────────────────────────────────────────────────────────────────────────
# Server -> client
# ─────────────────────────────────────────────────────────────────────────────

class ConnectedMessage(BaseModel):
    type: Literal["connected"] = "connected"
    message: str

class DirectivesUpdatedMessage(BaseModel):
    type: Literal["directivesUpdated"] = "directivesUpdated"
    path: str
    directives: List[DirectiveModel]

class ContextAssembledMessage(BaseModel):
    type: Literal["contextAssembled"] = "contextAssembled"
    context: dict
    prompt: str

class DirectiveListMessage(BaseModel):
    type: Literal["directiveList"] = "directiveList"
    path: str
    directives: List[DirectiveModel]

class DirectiveMessage(BaseModel):
    type: Literal["directive"] = "directive"
    directive: DirectiveModel

class TurnRecordedMessage(BaseModel):
    type: Literal["turnRecorded"] = "turnRecorded"
    timestamp: str
    history_size: int

class EditAppliedMessage(BaseModel):
    type: Literal["editApplied"] = "editApplied"
    path: str
    applied: bool
    text: str
    code: str | None = None
    explanation: str = ""

class PongMessage(BaseModel):
    type: Literal["pong"] = "pong"

class ErrorMessage(BaseModel):
    type: Literal["error"] = "error"
    message: str


ServerMessage = Annotated[
    Union[
        ConnectedMessage,
        DirectivesUpdatedMessage,
        ContextAssembledMessage,
        DirectiveListMessage,
        DirectiveMessage,
        TurnRecordedMessage,
        EditAppliedMessage,
        PongMessage,
        ErrorMessage,
    ],
    Field(discriminator="type"),
]
