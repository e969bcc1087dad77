import logging
import re
import unicodedata

from refund_agents.core.config import Settings
from refund_agents.llm.provider import GenerationConfig, LLMMessage, LLMProvider, LLMProviderError
from refund_agents.pipeline.errors import DraftingFailed
from refund_agents.schemas.case import Case, ExtractedFacts, Language, PolicyAnalysis

logger = logging.getLogger(__name__)

LANGUAGE_NAMES = {
    Language.EN: "English",
    Language.ZH: "Chinese (Simplified)",
    Language.ES: "Spanish",
}

LETTER_PROMPT = """You are a professional Consumer Rights Lawyer.
Write a formal, firm, but polite refund appeal letter.

Language: {language}

Facts:
- To: {merchant}
- Email: {email}
- Reference: {reference}
- Date: {date}
- Amount: {amount} {currency}
- Incident: {issue}

Legal Argument:
- Core Argument: {clause}
- Strategy: {strategy}

Structure:
1. Formal header.
2. Clear statement of request (Full Refund).
3. Factual timeline.
4. Legal/Policy justification.
5. Call to action (7 days deadline).

Output strictly the letter content in Markdown format.
"""


class LetterDrafter:
    def __init__(self, settings: Settings, llm_provider: LLMProvider) -> None:
        self.settings = settings
        self.llm_provider = llm_provider

    async def draft(self, facts: ExtractedFacts, analysis: PolicyAnalysis, language: Language) -> str:
        prompt = LETTER_PROMPT.format(
            language=LANGUAGE_NAMES[Language(language)],
            merchant=facts.merchant_name,
            email=facts.merchant_email or "Customer Support",
            reference=facts.booking_reference or "N/A",
            date=facts.transaction_date,
            amount=facts.amount,
            currency=facts.currency,
            issue=facts.issue_description,
            clause=analysis.key_policy_clause,
            strategy=analysis.strategy_suggestion,
        )
        config = GenerationConfig(temperature=self.settings.drafting_temperature)
        logger.info("Drafting letter", extra={"merchant": facts.merchant_name, "language": Language(language).value})

        try:
            response = await self.llm_provider.generate(
                [LLMMessage(role="user", content=prompt)], self.settings.drafting_model, config
            )
        except LLMProviderError as exc:
            raise DraftingFailed(f"Letter drafting request failed: {exc}") from exc

        if not response.text.strip():
            raise DraftingFailed("Failed to generate letter.")
        return response.text


def letter_filename(case: Case, ascii_only: bool = False) -> str:
    """Export name for the case letter; ``ascii_only`` folds the merchant for legacy header fields."""
    merchant = case.extracted_data.merchant_name if case.extracted_data else ""
    if ascii_only:
        merchant = unicodedata.normalize("NFKD", merchant).encode("ascii", "ignore").decode("ascii")
        slug = re.sub(r"[^A-Za-z0-9.-]+", "_", merchant.strip()).strip("_")
    else:
        slug = re.sub(r"[^\w.-]+", "_", merchant.strip()).strip("_")
    return f"Refund_Appeal_{slug or 'Draft'}.txt"
