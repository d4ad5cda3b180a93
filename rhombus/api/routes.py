import logging
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query

from rhombus.api.deps import get_workbench
from rhombus.models.request import (
    ApplyReplyRequest,
    CloseDocumentRequest,
    ContextRequest,
    DocumentRequest,
    RangeModel,
    RecordTurnRequest,
    SaveDocumentRequest,
    SelectionRequest,
)
from rhombus.models.response import (
    ContextResponse,
    DirectiveModel,
    DocumentResponse,
    EditResponse,
    SymbolHit,
    TurnResponse,
)
from rhombus.models.document import TextDocument
from rhombus.services.context_manager import render_prompt
from rhombus.services.directive_indexer import DirectiveNotFoundError
from rhombus.services.workbench import Workbench

logger = logging.getLogger(__name__)
router = APIRouter()


def _document_response(workbench: Workbench, document: TextDocument) -> DocumentResponse:
    return DocumentResponse(
        path=document.path,
        version=document.version,
        directives=[DirectiveModel.from_directive(d) for d in workbench.indexer.get_all_directives(document.path)],
    )


# ─────────────────────────────────────────────────────────────────────────────
# Documents & editor state
# ─────────────────────────────────────────────────────────────────────────────

@router.post("/documents/open", response_model=DocumentResponse)
async def open_document(request: DocumentRequest, workbench: Workbench = Depends(get_workbench)):
    """Registers an editor tab and indexes its directives"""
    document = await workbench.registry.open(request.path, request.text)
    return _document_response(workbench, document)

@router.post("/documents/change", response_model=DocumentResponse)
async def change_document(request: DocumentRequest, workbench: Workbench = Depends(get_workbench)):
    """Replaces the buffer text after an edit and re-indexes it"""
    document = await workbench.registry.change(request.path, request.text)
    return _document_response(workbench, document)

@router.post("/documents/save", response_model=DocumentResponse)
async def save_document(request: SaveDocumentRequest, workbench: Workbench = Depends(get_workbench)):
    try:
        document = await workbench.registry.save(request.path, request.text)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Document {request.path} is not open")
    return _document_response(workbench, document)

@router.post("/documents/close")
async def close_document(request: CloseDocumentRequest, workbench: Workbench = Depends(get_workbench)):
    closed = await workbench.registry.close(request.path)
    return {"path": request.path, "closed": closed}

@router.post("/documents/apply-reply", response_model=EditResponse)
async def apply_reply(request: ApplyReplyRequest, workbench: Workbench = Depends(get_workbench)):
    """Extracts code from a completion reply and splices it into the document"""
    try:
        result = await workbench.apply_reply(request.path, request.reply, request.start_line, request.end_line)
    except OSError as e:
        raise HTTPException(status_code=404, detail=f"Cannot read {request.path}: {e}")
    return EditResponse(**result)

@router.post("/editor/selection")
async def set_selection(request: SelectionRequest, workbench: Workbench = Depends(get_workbench)):
    """Records the focused editor and its selection"""
    state = workbench.registry.set_active_editor(
        request.path,
        request.selection.to_range() if request.selection else None,
    )
    return {
        "path": state.path,
        "selection": RangeModel.from_range(state.selection),
        "directives": workbench.indexer.get_all_for_range(state.path, state.selection),
    }


# ─────────────────────────────────────────────────────────────────────────────
# Directives
# ─────────────────────────────────────────────────────────────────────────────

@router.get("/directives", response_model=List[DirectiveModel])
async def list_directives(path: str = Query(...), workbench: Workbench = Depends(get_workbench)):
    path = workbench.workspace.resolve_path(path)
    return [DirectiveModel.from_directive(d) for d in workbench.indexer.get_all_directives(path)]

@router.get("/directives/{directive_id}", response_model=DirectiveModel)
async def get_directive(directive_id: str, path: str = Query(...), workbench: Workbench = Depends(get_workbench)):
    try:
        directive = workbench.indexer.get(workbench.workspace.resolve_path(path), directive_id)
    except DirectiveNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return DirectiveModel.from_directive(directive)


# ─────────────────────────────────────────────────────────────────────────────
# Context & history
# ─────────────────────────────────────────────────────────────────────────────

@router.post("/context", response_model=ContextResponse)
async def collect_context(request: ContextRequest, workbench: Workbench = Depends(get_workbench)):
    """Assembles the ranked, budgeted context for a request and renders the prompt"""
    context = await workbench.assembler.assemble(request.intent, request.target_file)
    return ContextResponse(context=context.to_dict(), prompt=render_prompt(context, request.intent))

@router.post("/history", response_model=TurnResponse)
async def record_turn(request: RecordTurnRequest, workbench: Workbench = Depends(get_workbench)):
    turn = workbench.ledger.record(request.request, request.response, request.files_modified)
    return TurnResponse(**turn.to_dict())

@router.get("/history", response_model=List[TurnResponse])
async def get_history(limit: Optional[int] = Query(None, ge=1), workbench: Workbench = Depends(get_workbench)):
    turns = workbench.ledger.recent_turns(limit) if limit else workbench.ledger.all_turns()
    return [TurnResponse(**turn.to_dict()) for turn in turns]


# ─────────────────────────────────────────────────────────────────────────────
# Symbols, caches, status
# ─────────────────────────────────────────────────────────────────────────────

@router.get("/symbols/search", response_model=List[SymbolHit])
async def search_symbols(q: str = Query(..., min_length=1), workbench: Workbench = Depends(get_workbench)):
    """Workspace symbol search through the symbol oracle"""
    hits = await workbench.search.search_workspace_for_symbol(q)
    return [
        SymbolHit(name=hit.symbol, file=hit.file, range=RangeModel.from_range(hit.range), kind=hit.kind)
        for hit in hits
    ]

@router.post("/cache/clear")
async def clear_cache(workbench: Workbench = Depends(get_workbench)):
    workbench.clear_caches()
    return {"status": "cleared"}

@router.get("/status")
async def status(workbench: Workbench = Depends(get_workbench)):
    return workbench.status()
