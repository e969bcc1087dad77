from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model serialised with the camelCase keys of the persisted records."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Language(str, Enum):
    EN = "en"
    ZH = "zh"
    ES = "es"


class UploadStatus(str, Enum):
    PENDING = "pending"
    DONE = "done"
    FAILED = "failed"


class _EvidenceBase(CamelModel):
    id: str
    mime_type: str
    display_name: str
    upload_status: UploadStatus = UploadStatus.DONE
    upload_progress: int = Field(default=100, ge=0, le=100)


class _BinaryEvidence(_EvidenceBase):
    data: str = Field(default="", description="Base64-encoded file content")


class ImageEvidence(_BinaryEvidence):
    kind: Literal["image"] = "image"


class PdfEvidence(_BinaryEvidence):
    kind: Literal["pdf"] = "pdf"


class AudioEvidence(_BinaryEvidence):
    kind: Literal["audio"] = "audio"


class VideoEvidence(_BinaryEvidence):
    kind: Literal["video"] = "video"


class LinkEvidence(_EvidenceBase):
    kind: Literal["link"] = "link"
    mime_type: str = "text/uri-list"
    url: str


BinaryEvidence = Union[ImageEvidence, PdfEvidence, AudioEvidence, VideoEvidence]
EvidenceItem = Annotated[
    Union[ImageEvidence, PdfEvidence, AudioEvidence, VideoEvidence, LinkEvidence],
    Field(discriminator="kind"),
]


class SearchSource(CamelModel):
    title: str
    uri: str


REQUIRED_FACT_FIELDS = ("merchant_name", "amount", "currency", "transaction_date", "issue_description")


class ExtractedFacts(CamelModel):
    merchant_name: str = ""
    merchant_email: Optional[str] = None
    transaction_date: str = ""
    amount: str = ""
    currency: str = ""
    booking_reference: Optional[str] = None
    issue_description: str = ""
    search_sources: Optional[List[SearchSource]] = None

    @field_validator("amount", "transaction_date", "currency", "booking_reference", "merchant_email", mode="before")
    @classmethod
    def _stringify(cls, value, info: ValidationInfo):
        # Models return amounts, dates and booking numbers as JSON numbers.
        if value is None:
            return None if info.field_name in ("booking_reference", "merchant_email") else ""
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    def missing_required(self) -> List[str]:
        """Return aliases of the required fields that are empty."""
        missing = []
        for name in REQUIRED_FACT_FIELDS:
            if not str(getattr(self, name) or "").strip():
                missing.append(to_camel(name))
        return missing


class PolicyAnalysis(CamelModel):
    is_likely_refundable: bool
    refund_probability_score: int = Field(..., ge=0, le=100)
    key_policy_clause: str
    strategy_suggestion: str


class Case(CamelModel):
    id: str
    created_at: Optional[int] = None
    user_language: Language = Language.EN
    evidence_files: List[EvidenceItem] = Field(default_factory=list)
    user_notes: str = ""
    extracted_data: Optional[ExtractedFacts] = None
    policy_analysis: Optional[PolicyAnalysis] = None
    generated_letter: Optional[str] = None


class TemplateData(CamelModel):
    merchant_name: Optional[str] = None
    merchant_email: Optional[str] = None
    issue_description: Optional[str] = None
    user_notes: Optional[str] = None
    currency: Optional[str] = None


class Template(CamelModel):
    id: str
    name: str
    created_at: int
    data: TemplateData = Field(default_factory=TemplateData)
