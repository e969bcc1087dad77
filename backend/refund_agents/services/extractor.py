import logging
from typing import Dict, List, Sequence, Tuple

import jsonschema
from pydantic import ValidationError

from refund_agents.core.config import Settings
from refund_agents.llm.provider import GenerationConfig, InlineData, LLMMessage, LLMProvider, LLMProviderError
from refund_agents.pipeline.errors import ExtractionFailed
from refund_agents.schemas.case import (
    AudioEvidence,
    EvidenceItem,
    ExtractedFacts,
    ImageEvidence,
    LinkEvidence,
    PdfEvidence,
    SearchSource,
    UploadStatus,
    VideoEvidence,
)
from refund_agents.services.sanitizer import MalformedModelOutput, parse_model_json

logger = logging.getLogger(__name__)

EXTRACTION_SCHEMA: Dict = {
    "type": "object",
    "properties": {
        "merchantName": {"type": "string", "description": "Name of airline, hotel, or travel agency"},
        "merchantEmail": {
            "type": ["string", "number"],
            "description": "Customer service or support email address found in documents (e.g. support@airline.com)",
        },
        "transactionDate": {
            "type": ["string", "number"],
            "description": "Date of transaction or booking in YYYY-MM-DD format",
        },
        "amount": {"type": ["string", "number"], "description": "Total amount paid (numeric value)"},
        "currency": {"type": "string", "description": "Currency code (e.g. USD, CNY)"},
        "bookingReference": {
            "type": ["string", "number"],
            "description": "Booking ID, PNR, or Ticket Number if visible",
        },
        "issueDescription": {
            "type": "string",
            "description": "Summary of what went wrong based on visual evidence, audio transcripts, or notes",
        },
    },
    "required": ["merchantName", "amount", "issueDescription"],
}

# Gemini's schema subset has no union types; numeric-tolerant fields are requested as strings.
_RESPONSE_SCHEMA: Dict = {
    **EXTRACTION_SCHEMA,
    "properties": {
        name: {**prop, "type": "string"} if isinstance(prop["type"], list) else prop
        for name, prop in EXTRACTION_SCHEMA["properties"].items()
    },
}

EXTRACTION_RULES = """You are an expert Data Extraction Agent.
Analyze the provided evidence and the user's notes.

User Notes: "{notes}"
URLs/Links provided: {links}

Extraction Rules:
1. **Hierarchy of Truth**: PRIORITIZE official documents (Receipts, Invoices, Tickets) over User Notes for factual data.
2. **Issue Description**: Summarize *why* the refund is needed.
3. **Contact Info**: Look carefully for "support@", "help@" emails.
"""

SEARCH_INSTRUCTIONS = """
**CRITICAL INSTRUCTION**:
- Use Google Search to verify specific details if unclear.
- **Output strictly VALID JSON**.
- No markdown formatting like ```json.
- No conversational filler.

Format: {"merchantName": "...", "merchantEmail": "...", "transactionDate": "...", "amount": "...", "currency": "...", "bookingReference": "...", "issueDescription": "..."}
"""


def split_evidence(items: Sequence[EvidenceItem]) -> Tuple[List[InlineData], List[str]]:
    """Split evidence into inline attachments and link references."""
    attachments: List[InlineData] = []
    links: List[str] = []
    for item in items:
        if isinstance(item, LinkEvidence):
            links.append(item.url)
        elif isinstance(item, (ImageEvidence, PdfEvidence, AudioEvidence, VideoEvidence)):
            if item.upload_status is UploadStatus.DONE and item.data:
                attachments.append(InlineData(mime_type=item.mime_type, data=item.data))
        else:
            raise TypeError(f"Unhandled evidence kind: {type(item).__name__}")
    return attachments, links


class EvidenceExtractor:
    def __init__(self, settings: Settings, llm_provider: LLMProvider) -> None:
        self.settings = settings
        self.llm_provider = llm_provider

    async def extract(
        self,
        evidence: Sequence[EvidenceItem],
        notes: str,
        use_search: bool = False,
    ) -> ExtractedFacts:
        attachments, links = split_evidence(evidence)
        message, config = self._build_request(attachments, links, notes, use_search)
        logger.info(
            "Extracting evidence",
            extra={"attachments": len(attachments), "links": len(links), "use_search": use_search},
        )

        try:
            response = await self.llm_provider.generate([message], self.settings.extraction_model, config)
        except LLMProviderError as exc:
            raise ExtractionFailed(f"Evidence extraction request failed: {exc}") from exc

        try:
            output = parse_model_json(response.text)
        except MalformedModelOutput as exc:
            raise ExtractionFailed("Failed to extract data. Please provide clearer evidence.") from exc

        facts = self._validate_output(output)
        if use_search and response.citations:
            facts.search_sources = [SearchSource(title=c.title, uri=c.uri) for c in response.citations]
        return facts

    def _build_request(
        self,
        attachments: List[InlineData],
        links: List[str],
        notes: str,
        use_search: bool,
    ) -> Tuple[LLMMessage, GenerationConfig]:
        prompt = EXTRACTION_RULES.format(notes=notes, links="\n".join(links) or "None")
        if use_search:
            prompt += SEARCH_INSTRUCTIONS
            config = GenerationConfig(temperature=self.settings.extraction_temperature, use_search=True)
        else:
            prompt += "\n\nExtract the key details strictly into JSON format."
            config = GenerationConfig(
                temperature=self.settings.extraction_temperature,
                response_schema=_RESPONSE_SCHEMA,
            )
        return LLMMessage(role="user", content=prompt, attachments=tuple(attachments)), config

    def _validate_output(self, output: Dict) -> ExtractedFacts:
        output = {key: value for key, value in output.items() if value is not None}
        try:
            jsonschema.validate(instance=output, schema=EXTRACTION_SCHEMA)
        except jsonschema.ValidationError as exc:
            raise ExtractionFailed(f"Extracted data failed schema validation: {exc.message}") from exc

        # Search sources are only ever taken from grounding metadata.
        output.pop("searchSources", None)
        try:
            return ExtractedFacts.model_validate(output)
        except ValidationError as exc:
            raise ExtractionFailed("Extracted data failed model validation") from exc
