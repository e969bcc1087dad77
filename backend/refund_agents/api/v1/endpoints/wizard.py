from typing import List
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from fastapi.responses import PlainTextResponse

from refund_agents.api.deps import get_orchestrator
from refund_agents.pipeline.evidence import PendingUpload
from refund_agents.pipeline.orchestrator import CaseOrchestrator
from refund_agents.schemas.wizard import (
    ExtractedFieldUpdate,
    LinkRequest,
    NotesUpdate,
    SettingsUpdate,
    StartRequest,
    UploadReport,
    WizardSnapshot,
)
from refund_agents.storage.local_store import RecordNotFoundError

router = APIRouter()


@router.get("", response_model=WizardSnapshot)
async def get_wizard(orchestrator: CaseOrchestrator = Depends(get_orchestrator)) -> WizardSnapshot:
    return orchestrator.snapshot()


@router.post("/start", response_model=WizardSnapshot)
async def start_case(
    body: StartRequest | None = None,
    orchestrator: CaseOrchestrator = Depends(get_orchestrator),
) -> WizardSnapshot:
    return await orchestrator.start_new(body.language if body else None)


@router.post("/load/{case_id}", response_model=WizardSnapshot)
async def load_case(case_id: str, orchestrator: CaseOrchestrator = Depends(get_orchestrator)) -> WizardSnapshot:
    try:
        return await orchestrator.load_saved_case(case_id)
    except RecordNotFoundError as exc:
        raise HTTPException(status_code=404, detail="case_id not found") from exc


@router.post("/templates/{template_id}", response_model=WizardSnapshot)
async def start_from_template(
    template_id: str,
    orchestrator: CaseOrchestrator = Depends(get_orchestrator),
) -> WizardSnapshot:
    try:
        return await orchestrator.start_from_saved_template(template_id)
    except RecordNotFoundError as exc:
        raise HTTPException(status_code=404, detail="template_id not found") from exc


@router.post("/home", response_model=WizardSnapshot)
async def go_home(orchestrator: CaseOrchestrator = Depends(get_orchestrator)) -> WizardSnapshot:
    return orchestrator.go_home()


@router.post("/evidence/files", response_model=UploadReport)
async def upload_evidence(
    files: List[UploadFile] = File(...),
    orchestrator: CaseOrchestrator = Depends(get_orchestrator),
) -> UploadReport:
    uploads = [
        PendingUpload(
            filename=upload.filename or "upload",
            mime_type=upload.content_type or "",
            read=upload.read,
            size=upload.size,
        )
        for upload in files
    ]
    return await orchestrator.add_files(uploads)


@router.post("/evidence/links", response_model=WizardSnapshot)
async def add_link(body: LinkRequest, orchestrator: CaseOrchestrator = Depends(get_orchestrator)) -> WizardSnapshot:
    return orchestrator.add_link(body.url)


@router.delete("/evidence/{evidence_id}", response_model=WizardSnapshot)
async def remove_evidence(evidence_id: str, orchestrator: CaseOrchestrator = Depends(get_orchestrator)) -> WizardSnapshot:
    return orchestrator.remove_evidence(evidence_id)


@router.put("/notes", response_model=WizardSnapshot)
async def update_notes(body: NotesUpdate, orchestrator: CaseOrchestrator = Depends(get_orchestrator)) -> WizardSnapshot:
    return orchestrator.update_notes(body.notes)


@router.put("/settings", response_model=WizardSnapshot)
async def update_settings(body: SettingsUpdate, orchestrator: CaseOrchestrator = Depends(get_orchestrator)) -> WizardSnapshot:
    if body.use_web_search is not None:
        orchestrator.set_web_search(body.use_web_search)
    if body.language is not None:
        orchestrator.set_language(body.language)
    return orchestrator.snapshot()


@router.patch("/extracted", response_model=WizardSnapshot)
async def update_extracted(
    body: ExtractedFieldUpdate,
    orchestrator: CaseOrchestrator = Depends(get_orchestrator),
) -> WizardSnapshot:
    return orchestrator.update_extracted_field(body.field, body.value)


@router.post("/process", response_model=WizardSnapshot)
async def process(orchestrator: CaseOrchestrator = Depends(get_orchestrator)) -> WizardSnapshot:
    return await orchestrator.start_processing()


@router.post("/analysis/refresh", response_model=WizardSnapshot)
async def refresh_analysis(orchestrator: CaseOrchestrator = Depends(get_orchestrator)) -> WizardSnapshot:
    return await orchestrator.refresh_analysis()


@router.post("/letter", response_model=WizardSnapshot)
async def generate_letter(orchestrator: CaseOrchestrator = Depends(get_orchestrator)) -> WizardSnapshot:
    return await orchestrator.generate_letter()


def content_disposition(filename: str, ascii_filename: str) -> str:
    """Attachment header; non-ASCII names go in an RFC 5987 ``filename*`` beside the ASCII fallback."""
    header = f'attachment; filename="{ascii_filename}"'
    if filename != ascii_filename:
        header += f"; filename*=UTF-8''{quote(filename)}"
    return header


@router.get("/letter/download", response_class=PlainTextResponse)
async def download_letter(orchestrator: CaseOrchestrator = Depends(get_orchestrator)) -> PlainTextResponse:
    export = orchestrator.letter_export()
    return PlainTextResponse(
        export.text,
        headers={"Content-Disposition": content_disposition(export.filename, export.ascii_filename)},
    )


@router.post("/retry", response_model=WizardSnapshot)
async def retry(orchestrator: CaseOrchestrator = Depends(get_orchestrator)) -> WizardSnapshot:
    return await orchestrator.retry()
