from fastapi import APIRouter, Depends, HTTPException, Response

from refund_agents.api.deps import get_orchestrator
from refund_agents.pipeline.orchestrator import CaseOrchestrator
from refund_agents.schemas.case import Template
from refund_agents.schemas.wizard import TemplateCreate
from refund_agents.storage.local_store import RecordNotFoundError

router = APIRouter()


@router.get("/templates", response_model=list[Template], response_model_by_alias=True)
async def list_templates(orchestrator: CaseOrchestrator = Depends(get_orchestrator)) -> list[Template]:
    return await orchestrator.list_templates()


@router.post("/templates", response_model=Template, response_model_by_alias=True, status_code=201)
async def create_template(
    body: TemplateCreate,
    orchestrator: CaseOrchestrator = Depends(get_orchestrator),
) -> Template:
    return await orchestrator.save_template(body.name)


@router.delete("/templates/{template_id}", status_code=204)
async def delete_template(template_id: str, orchestrator: CaseOrchestrator = Depends(get_orchestrator)) -> Response:
    try:
        await orchestrator.delete_template(template_id)
    except RecordNotFoundError as exc:
        raise HTTPException(status_code=404, detail="template_id not found") from exc
    return Response(status_code=204)
