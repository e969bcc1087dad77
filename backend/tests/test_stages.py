import json

import pytest

from conftest import ANALYSIS_MODEL, DRAFTING_MODEL, EXTRACTION_MODEL
from refund_agents.llm.provider import Citation, LLMProviderError, LLMResponse
from refund_agents.pipeline.errors import AnalysisFailed, DraftingFailed, ExtractionFailed
from refund_agents.schemas.case import (
    Case,
    ExtractedFacts,
    ImageEvidence,
    Language,
    LinkEvidence,
    PdfEvidence,
    PolicyAnalysis,
    UploadStatus,
)
from refund_agents.services.analyst import PolicyAnalyst
from refund_agents.services.drafter import LetterDrafter, letter_filename
from refund_agents.services.extractor import EvidenceExtractor

FACTS = {
    "merchantName": "Acme Air",
    "amount": "250",
    "currency": "USD",
    "transactionDate": "2024-01-01",
    "issueDescription": "Flight cancelled",
}

ANALYSIS = {
    "isLikelyRefundable": True,
    "refundProbabilityScore": 82,
    "keyPolicyClause": "EU261 Article 5",
    "strategySuggestion": "Cite the cancellation notice.",
}


def _evidence():
    return [
        ImageEvidence(id="img", mime_type="image/png", display_name="receipt.png", data="aGVsbG8="),
        PdfEvidence(
            id="pdf",
            mime_type="application/pdf",
            display_name="ticket.pdf",
            upload_status=UploadStatus.PENDING,
            upload_progress=10,
        ),
        LinkEvidence(id="link", display_name="https://acme.example/booking", url="https://acme.example/booking"),
    ]


@pytest.mark.asyncio
async def test_extractor_sends_inline_parts_and_schema(settings, provider):
    provider.script(EXTRACTION_MODEL, json.dumps(FACTS))
    facts = await EvidenceExtractor(settings, provider).extract(_evidence(), "My flight was cancelled")

    assert facts.merchant_name == "Acme Air"
    model, messages, config = provider.calls[0]
    assert model == EXTRACTION_MODEL
    # Pending uploads are not sent.
    assert [a.mime_type for a in messages[0].attachments] == ["image/png"]
    assert "https://acme.example/booking" in messages[0].content
    assert "My flight was cancelled" in messages[0].content
    assert config.response_schema["required"] == ["merchantName", "amount", "issueDescription"]
    assert config.use_search is False
    assert config.temperature == pytest.approx(0.1)


@pytest.mark.asyncio
async def test_extractor_with_search_parses_wrapped_json_and_sources(settings, provider):
    text = "Here you go:\n```json\n" + json.dumps({**FACTS, "amount": 250}) + "\n```"
    provider.script(
        EXTRACTION_MODEL,
        LLMResponse(text=text, citations=[Citation(title="Acme policy", uri="https://acme.example/policy")]),
    )
    facts = await EvidenceExtractor(settings, provider).extract([], "Cancelled flight, no refund yet", use_search=True)

    assert facts.amount == "250"
    assert facts.search_sources[0].uri == "https://acme.example/policy"
    _, messages, config = provider.calls[0]
    assert config.use_search is True
    assert config.response_schema is None
    assert "URLs/Links provided: None" in messages[0].content


@pytest.mark.asyncio
async def test_extractor_ignores_citations_without_search(settings, provider):
    provider.script(EXTRACTION_MODEL, LLMResponse(text=json.dumps(FACTS), citations=[Citation("t", "u")]))
    facts = await EvidenceExtractor(settings, provider).extract([], "notes long enough")
    assert facts.search_sources is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "scripted",
    [
        "I could not read the receipt.",
        json.dumps({"merchantName": "Acme Air"}),
        LLMProviderError("quota exceeded"),
    ],
)
async def test_extractor_failures(settings, provider, scripted):
    provider.script(EXTRACTION_MODEL, scripted)
    with pytest.raises(ExtractionFailed):
        await EvidenceExtractor(settings, provider).extract([], "notes long enough")


@pytest.mark.asyncio
async def test_extractor_accepts_numeric_reference_and_date(settings, provider):
    provider.script(
        EXTRACTION_MODEL,
        json.dumps({**FACTS, "bookingReference": 1234567890, "transactionDate": 20240101, "merchantEmail": None}),
    )
    facts = await EvidenceExtractor(settings, provider).extract([], "Ticket number is on the receipt")

    assert facts.booking_reference == "1234567890"
    assert facts.transaction_date == "20240101"
    assert facts.merchant_email is None
    _, _, config = provider.calls[0]
    properties = config.response_schema["properties"]
    assert {properties[name]["type"] for name in properties} == {"string"}


@pytest.mark.asyncio
async def test_analyst_returns_policy_analysis(settings, provider):
    provider.script(ANALYSIS_MODEL, json.dumps(ANALYSIS))
    analysis = await PolicyAnalyst(settings, provider).analyze(ExtractedFacts.model_validate(FACTS))

    assert analysis.refund_probability_score == 82
    _, messages, config = provider.calls[0]
    assert "Merchant: Acme Air" in messages[0].content
    assert "Amount: 250 USD" in messages[0].content
    assert config.response_schema["properties"]["refundProbabilityScore"]["type"] == "integer"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "scripted",
    [
        "",
        "not json",
        json.dumps({**ANALYSIS, "refundProbabilityScore": 140}),
        json.dumps({"isLikelyRefundable": True}),
        LLMProviderError("blocked"),
    ],
)
async def test_analyst_failures(settings, provider, scripted):
    provider.script(ANALYSIS_MODEL, scripted)
    with pytest.raises(AnalysisFailed) as excinfo:
        await PolicyAnalyst(settings, provider).analyze(ExtractedFacts.model_validate(FACTS), refresh=True)
    assert excinfo.value.refresh is True


@pytest.mark.asyncio
async def test_drafter_uses_requested_language(settings, provider):
    provider.script(DRAFTING_MODEL, "# Refund request\n\nDear Acme Air,")
    letter = await LetterDrafter(settings, provider).draft(
        ExtractedFacts.model_validate(FACTS), PolicyAnalysis.model_validate(ANALYSIS), Language.ES
    )

    assert letter == "# Refund request\n\nDear Acme Air,"
    _, messages, config = provider.calls[0]
    assert "Language: Spanish" in messages[0].content
    assert "7 days deadline" in messages[0].content
    assert "Email: Customer Support" in messages[0].content
    assert config.response_schema is None


@pytest.mark.asyncio
async def test_drafter_empty_text_fails(settings, provider):
    provider.script(DRAFTING_MODEL, "   ")
    with pytest.raises(DraftingFailed):
        await LetterDrafter(settings, provider).draft(
            ExtractedFacts.model_validate(FACTS), PolicyAnalysis.model_validate(ANALYSIS), Language.EN
        )


@pytest.mark.parametrize(
    "merchant, unicode_name, ascii_name",
    [
        ("Acme Air", "Refund_Appeal_Acme_Air.txt", "Refund_Appeal_Acme_Air.txt"),
        ("Café Lumière", "Refund_Appeal_Café_Lumière.txt", "Refund_Appeal_Cafe_Lumiere.txt"),
        ("中国国际航空", "Refund_Appeal_中国国际航空.txt", "Refund_Appeal_Draft.txt"),
        ("", "Refund_Appeal_Draft.txt", "Refund_Appeal_Draft.txt"),
    ],
)
def test_letter_filename_keeps_unicode_with_ascii_fallback(merchant, unicode_name, ascii_name):
    case = Case(id="c1", extracted_data=ExtractedFacts(merchant_name=merchant))
    assert letter_filename(case) == unicode_name
    assert letter_filename(case, ascii_only=True) == ascii_name
