from fastapi import APIRouter, Depends, HTTPException, Response

from refund_agents.api.deps import get_orchestrator
from refund_agents.pipeline.orchestrator import CaseOrchestrator
from refund_agents.schemas.case import Case
from refund_agents.storage.local_store import RecordNotFoundError

router = APIRouter()


@router.get("/cases", response_model=list[Case], response_model_by_alias=True)
async def list_cases(orchestrator: CaseOrchestrator = Depends(get_orchestrator)) -> list[Case]:
    return await orchestrator.list_history()


@router.get("/cases/{case_id}", response_model=Case, response_model_by_alias=True)
def get_case(case_id: str, orchestrator: CaseOrchestrator = Depends(get_orchestrator)) -> Case:
    try:
        return orchestrator.store.get_case(case_id)
    except RecordNotFoundError as exc:
        raise HTTPException(status_code=404, detail="case_id not found") from exc


@router.delete("/cases/{case_id}", status_code=204)
async def delete_case(case_id: str, orchestrator: CaseOrchestrator = Depends(get_orchestrator)) -> Response:
    try:
        await orchestrator.delete_case(case_id)
    except RecordNotFoundError as exc:
        raise HTTPException(status_code=404, detail="case_id not found") from exc
    return Response(status_code=204)
