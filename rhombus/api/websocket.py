import asyncio
import logging
from typing import Optional, assert_never
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from rhombus.api.deps import get_workbench
from rhombus.models.messages import (
    ApplyReplyMessage,
    ChangeDocumentMessage,
    ClientMessage,
    CloseDocumentMessage,
    CollectContextMessage,
    ConnectedMessage,
    ContextAssembledMessage,
    DirectiveListMessage,
    DirectiveMessage,
    DirectivesUpdatedMessage,
    EditAppliedMessage,
    ErrorMessage,
    GetDirectiveMessage,
    ListDirectivesMessage,
    OpenDocumentMessage,
    PingMessage,
    PongMessage,
    RecordTurnMessage,
    SaveDocumentMessage,
    ServerMessage,
    SetSelectionMessage,
    TurnRecordedMessage,
    client_message_adapter,
)
from rhombus.models.response import DirectiveModel
from rhombus.services.context_manager import render_prompt
from rhombus.services.directive_indexer import DirectiveNotFoundError
from rhombus.services.workbench import Workbench

logger = logging.getLogger(__name__)
router = APIRouter()


def _directives(workbench: Workbench, path: str) -> list[DirectiveModel]:
    path = workbench.workspace.resolve_path(path)
    return [DirectiveModel.from_directive(d) for d in workbench.indexer.get_all_directives(path)]


async def handle_message(workbench: Workbench, message: ClientMessage) -> Optional[ServerMessage]:
    """
    Run one client message against the workbench.

    Document open/change/save have no direct reply: the re-scan they
    trigger is announced to every client as `directivesUpdated`.
    """
    if isinstance(message, OpenDocumentMessage):
        await workbench.registry.open(message.path, message.text)
        return None

    elif isinstance(message, ChangeDocumentMessage):
        await workbench.registry.change(message.path, message.text)
        return None

    elif isinstance(message, SaveDocumentMessage):
        try:
            await workbench.registry.save(message.path, message.text)
        except KeyError:
            return ErrorMessage(message=f"Document {message.path} is not open")
        return None

    elif isinstance(message, CloseDocumentMessage):
        await workbench.registry.close(message.path)
        return DirectiveListMessage(path=message.path, directives=_directives(workbench, message.path))

    elif isinstance(message, SetSelectionMessage):
        state = workbench.registry.set_active_editor(
            message.path,
            message.selection.to_range() if message.selection else None,
        )
        in_range = [
            DirectiveModel.from_directive(d)
            for d in workbench.indexer.get_all_directives(state.path)
            if d.range.intersects(state.selection)
        ]
        return DirectiveListMessage(path=state.path, directives=in_range)

    elif isinstance(message, CollectContextMessage):
        context = await workbench.assembler.assemble(message.intent, message.target_file)
        return ContextAssembledMessage(context=context.to_dict(), prompt=render_prompt(context, message.intent))

    elif isinstance(message, RecordTurnMessage):
        turn = workbench.ledger.record(message.request, message.response, message.files_modified)
        return TurnRecordedMessage(timestamp=turn.timestamp, history_size=len(workbench.ledger))

    elif isinstance(message, ListDirectivesMessage):
        return DirectiveListMessage(path=message.path, directives=_directives(workbench, message.path))

    elif isinstance(message, GetDirectiveMessage):
        try:
            directive = workbench.indexer.get(workbench.workspace.resolve_path(message.path), message.id)
        except DirectiveNotFoundError as e:
            return ErrorMessage(message=str(e))
        return DirectiveMessage(directive=DirectiveModel.from_directive(directive))

    elif isinstance(message, ApplyReplyMessage):
        try:
            result = await workbench.apply_reply(message.path, message.reply, message.start_line, message.end_line)
        except OSError as e:
            return ErrorMessage(message=f"Cannot read {message.path}: {e}")
        return EditAppliedMessage(**result)

    elif isinstance(message, PingMessage):
        return PongMessage()

    else:
        assert_never(message)


@router.websocket("/ws/editor")
async def editor_ws(websocket: WebSocket, workbench: Workbench = Depends(get_workbench)):
    """Editor extension channel: document events in, context and directive updates out"""
    await websocket.accept()
    await websocket.send_json(ConnectedMessage(message="rhombus editor channel ready").model_dump())

    loop = asyncio.get_running_loop()
    pending: set[asyncio.Task] = set()

    async def push_update(path: str):
        update = DirectivesUpdatedMessage(path=path, directives=_directives(workbench, path))
        try:
            await websocket.send_json(update.model_dump())
        except Exception as e:
            logger.debug(f"Websocket: could not push directive update: {e}")

    def on_directives_updated(path: str):
        task = loop.create_task(push_update(path))
        pending.add(task)
        task.add_done_callback(pending.discard)

    unsubscribe = workbench.indexer.on_did_update(on_directives_updated)

    try:
        while True:
            raw = await websocket.receive_text()

            try:
                message = client_message_adapter.validate_json(raw)
            except ValidationError as e:
                await websocket.send_json(ErrorMessage(message=f"Invalid message: {e.errors()[0]['msg']}").model_dump())
                continue

            try:
                reply = await handle_message(workbench, message)
            except Exception as e:
                logger.error(f"Websocket: {message.type} failed: {e}")
                reply = ErrorMessage(message=f"{message.type} failed: {e}")

            if reply is not None:
                await websocket.send_json(reply.model_dump())

    except WebSocketDisconnect:
        logger.info("Client disconnected from /ws/editor")
    finally:
        unsubscribe()
        for task in pending:
            task.cancel()
