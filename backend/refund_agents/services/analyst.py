import logging
from typing import Dict

import jsonschema
from pydantic import ValidationError

from refund_agents.core.config import Settings
from refund_agents.llm.provider import GenerationConfig, LLMMessage, LLMProvider, LLMProviderError
from refund_agents.pipeline.errors import AnalysisFailed
from refund_agents.schemas.case import ExtractedFacts, PolicyAnalysis
from refund_agents.services.sanitizer import MalformedModelOutput, parse_model_json

logger = logging.getLogger(__name__)

ANALYSIS_SCHEMA: Dict = {
    "type": "object",
    "properties": {
        "isLikelyRefundable": {"type": "boolean"},
        "refundProbabilityScore": {
            "type": "integer",
            "minimum": 0,
            "maximum": 100,
            "description": "0 to 100 confidence score",
        },
        "keyPolicyClause": {"type": "string", "description": "The likely legal or policy reason for the refund"},
        "strategySuggestion": {"type": "string", "description": "Advice on how to argue this case"},
    },
    "required": ["isLikelyRefundable", "refundProbabilityScore", "keyPolicyClause", "strategySuggestion"],
}

ANALYSIS_PROMPT = """You are a Senior Travel Policy Analyst.
Case Details:
- Merchant: {merchant}
- Issue: {issue}
- Amount: {amount} {currency}

Based on general international consumer protection laws and standard travel industry policies:
1. Assess if this is likely refundable.
2. Identify the strongest legal or policy argument.
3. Suggest a negotiation strategy.
"""


class PolicyAnalyst:
    """Judge refundability of a case. Stateless; safe to call repeatedly."""

    def __init__(self, settings: Settings, llm_provider: LLMProvider) -> None:
        self.settings = settings
        self.llm_provider = llm_provider

    async def analyze(self, facts: ExtractedFacts, refresh: bool = False) -> PolicyAnalysis:
        prompt = ANALYSIS_PROMPT.format(
            merchant=facts.merchant_name,
            issue=facts.issue_description,
            amount=facts.amount,
            currency=facts.currency,
        )
        config = GenerationConfig(
            temperature=self.settings.analysis_temperature,
            response_schema=ANALYSIS_SCHEMA,
        )
        logger.info("Analyzing policy", extra={"merchant": facts.merchant_name, "refresh": refresh})

        try:
            response = await self.llm_provider.generate(
                [LLMMessage(role="user", content=prompt)], self.settings.analysis_model, config
            )
        except LLMProviderError as exc:
            raise AnalysisFailed(f"Policy analysis request failed: {exc}", refresh=refresh) from exc

        if not response.text.strip():
            raise AnalysisFailed("Policy analyst returned no content", refresh=refresh)

        try:
            output = parse_model_json(response.text)
            jsonschema.validate(instance=output, schema=ANALYSIS_SCHEMA)
            return PolicyAnalysis.model_validate(output)
        except MalformedModelOutput as exc:
            raise AnalysisFailed("Policy analysis is not valid JSON", refresh=refresh) from exc
        except jsonschema.ValidationError as exc:
            raise AnalysisFailed(f"Policy analysis failed schema validation: {exc.message}", refresh=refresh) from exc
        except ValidationError as exc:
            raise AnalysisFailed("Policy analysis failed model validation", refresh=refresh) from exc
