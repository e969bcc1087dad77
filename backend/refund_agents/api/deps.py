from fastapi import Request

from refund_agents.pipeline.orchestrator import CaseOrchestrator
from refund_agents.services.chat_service import RefundGuideChat


def get_orchestrator(request: Request) -> CaseOrchestrator:
    return request.app.state.orchestrator


def get_chat_service(request: Request) -> RefundGuideChat:
    return request.app.state.chat_service
