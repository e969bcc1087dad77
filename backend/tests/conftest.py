import asyncio
import sys
from collections import defaultdict
from pathlib import Path
from typing import Dict, List, Union

import pytest


REPO_ROOT = Path(__file__).resolve().parents[2]
BACKEND_ROOT = REPO_ROOT / "backend"

if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from refund_agents.core.config import Settings  # noqa: E402
from refund_agents.llm.provider import GenerationConfig, LLMMessage, LLMProvider, LLMResponse  # noqa: E402
from refund_agents.pipeline.orchestrator import CaseOrchestrator  # noqa: E402
from refund_agents.services.analyst import PolicyAnalyst  # noqa: E402
from refund_agents.services.drafter import LetterDrafter  # noqa: E402
from refund_agents.services.extractor import EvidenceExtractor  # noqa: E402
from refund_agents.storage.local_store import LocalStore  # noqa: E402

EXTRACTION_MODEL = "test-extract"
ANALYSIS_MODEL = "test-analyze"
DRAFTING_MODEL = "test-draft"
CHAT_MODEL = "test-chat"

Scripted = Union[str, LLMResponse, Exception]


class ScriptedProvider(LLMProvider):
    """Replays queued responses per model and records every call."""

    def __init__(self) -> None:
        self.queues: Dict[str, List[Scripted]] = defaultdict(list)
        self.calls: List[tuple] = []
        self.gates: Dict[str, asyncio.Event] = {}

    def script(self, model: str, *responses: Scripted) -> None:
        self.queues[model].extend(responses)

    def hold(self, model: str) -> asyncio.Event:
        gate = asyncio.Event()
        self.gates[model] = gate
        return gate

    def count(self, model: str) -> int:
        return sum(1 for call in self.calls if call[0] == model)

    async def generate(self, messages: List[LLMMessage], model: str, config: GenerationConfig) -> LLMResponse:
        self.calls.append((model, messages, config))
        gate = self.gates.get(model)
        if gate is not None:
            await gate.wait()
        if not self.queues[model]:
            raise AssertionError(f"No scripted response left for {model}")
        item = self.queues[model].pop(0)
        if isinstance(item, Exception):
            raise item
        if isinstance(item, str):
            return LLMResponse(text=item)
        return item


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(
        DATABASE_PATH=str(tmp_path / "refund.sqlite"),
        EXTRACTION_MODEL=EXTRACTION_MODEL,
        ANALYSIS_MODEL=ANALYSIS_MODEL,
        DRAFTING_MODEL=DRAFTING_MODEL,
        CHAT_MODEL=CHAT_MODEL,
        AUTOSAVE_INTERVAL_SECONDS=0.01,
    )


@pytest.fixture()
def provider() -> ScriptedProvider:
    return ScriptedProvider()


@pytest.fixture()
def store(settings: Settings) -> LocalStore:
    return LocalStore(settings.database_path)


@pytest.fixture()
def orchestrator(settings: Settings, provider: ScriptedProvider, store: LocalStore) -> CaseOrchestrator:
    return CaseOrchestrator(
        settings,
        store,
        EvidenceExtractor(settings, provider),
        PolicyAnalyst(settings, provider),
        LetterDrafter(settings, provider),
    )
