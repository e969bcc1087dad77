"""Pipeline failures, one class per stage."""
from typing import ClassVar, Optional

from refund_agents.schemas.wizard import FailureKind, StageError


class PipelineError(Exception):
    """Base class for pipeline failures surfaced by the orchestrator."""

    kind: ClassVar[FailureKind]

    def __init__(self, message: str, case_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.case_id = case_id

    def to_stage_error(self) -> StageError:
        return StageError(kind=self.kind, message=self.message, case_id=self.case_id)


class ValidationFailed(PipelineError):
    """A transition guard was not met; nothing was sent to the model."""

    kind = FailureKind.VALIDATION


class ExtractionFailed(PipelineError):
    kind = FailureKind.EXTRACTION


class AnalysisFailed(PipelineError):
    kind = FailureKind.ANALYSIS

    def __init__(self, message: str, case_id: Optional[str] = None, refresh: bool = False) -> None:
        super().__init__(message, case_id)
        self.refresh = refresh

    def to_stage_error(self) -> StageError:
        return StageError(kind=self.kind, message=self.message, refresh=self.refresh, case_id=self.case_id)


class DraftingFailed(PipelineError):
    kind = FailureKind.DRAFTING
