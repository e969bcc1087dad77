from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from refund_agents.schemas.case import Case, Language


class WizardStep(str, Enum):
    WELCOME = "WELCOME"
    UPLOADING_EVIDENCE = "UPLOADING_EVIDENCE"
    PROCESSING = "PROCESSING"
    REVIEWING_ANALYSIS = "REVIEWING_ANALYSIS"
    GENERATING_LETTER = "GENERATING_LETTER"
    LETTER_READY = "LETTER_READY"


class StageStatus(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    DONE = "done"


class FailureKind(str, Enum):
    VALIDATION = "validation"
    EXTRACTION = "extraction"
    ANALYSIS = "analysis"
    DRAFTING = "drafting"


class StageError(BaseModel):
    """User-visible failure overlay; ``kind`` and ``refresh`` decide what retry does."""

    kind: FailureKind
    message: str
    refresh: bool = False
    case_id: Optional[str] = None


class StageStatuses(BaseModel):
    extraction: StageStatus = StageStatus.WAITING
    analysis: StageStatus = StageStatus.WAITING
    drafting: StageStatus = StageStatus.WAITING


class WizardSnapshot(BaseModel):
    step: WizardStep
    case: Case
    stages: StageStatuses
    error: Optional[StageError] = None
    use_web_search: bool = False
    is_processing: bool = False
    is_reanalyzing: bool = False


class UploadReport(BaseModel):
    added: List[str] = Field(default_factory=list)
    failed: List[str] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)
    snapshot: WizardSnapshot


class StartRequest(BaseModel):
    language: Optional[Language] = None


class NotesUpdate(BaseModel):
    notes: str


class SettingsUpdate(BaseModel):
    use_web_search: Optional[bool] = None
    language: Optional[Language] = None


class LinkRequest(BaseModel):
    url: str = Field(..., min_length=1)


class ExtractedFieldUpdate(BaseModel):
    field: str
    value: str


class TemplateCreate(BaseModel):
    name: str = Field(..., min_length=1)
