"""Wizard state machine driving extraction, analysis, and drafting for one case at a time.

The orchestrator owns a single ``WizardState``. Each command either mutates
it synchronously or awaits one model stage. A command that awaits keeps a
reference to the state it started from. When the case was replaced in the
meantime (new case, loaded case, template), or the user went back to the
welcome step, the late result is dropped.
"""
import asyncio
import datetime as dt
import json
import logging
import sqlite3
import time
import uuid
from dataclasses import dataclass, field
from typing import Iterable, List, NamedTuple, Optional

from refund_agents.core.config import Settings
from refund_agents.pipeline.errors import (
    AnalysisFailed,
    DraftingFailed,
    ExtractionFailed,
    PipelineError,
    ValidationFailed,
)
from refund_agents.pipeline.evidence import PendingUpload, encode_upload, new_link_item, new_pending_item
from refund_agents.schemas.case import (
    Case,
    ExtractedFacts,
    Language,
    Template,
    TemplateData,
    UploadStatus,
)
from refund_agents.schemas.wizard import (
    StageStatus,
    StageStatuses,
    UploadReport,
    WizardSnapshot,
    WizardStep,
)
from refund_agents.services.analyst import PolicyAnalyst
from refund_agents.services.drafter import LetterDrafter, letter_filename
from refund_agents.services.extractor import EvidenceExtractor
from refund_agents.storage.local_store import LocalStore

logger = logging.getLogger(__name__)

EDITABLE_FACT_FIELDS = {
    "merchantName": "merchant_name",
    "merchantEmail": "merchant_email",
    "transactionDate": "transaction_date",
    "amount": "amount",
    "currency": "currency",
    "bookingReference": "booking_reference",
    "issueDescription": "issue_description",
}


def _now_ms() -> int:
    return int(time.time() * 1000)


def _new_case(language: Language) -> Case:
    return Case(id=uuid.uuid4().hex, user_language=language)


class LetterExport(NamedTuple):
    filename: str
    ascii_filename: str
    text: str


@dataclass
class WizardState:
    case: Case
    step: WizardStep = WizardStep.WELCOME
    stages: StageStatuses = field(default_factory=StageStatuses)
    error: Optional[PipelineError] = None
    use_web_search: bool = False
    processing: bool = False
    reanalyzing: bool = False


class CaseOrchestrator:
    def __init__(
        self,
        settings: Settings,
        store: LocalStore,
        extractor: EvidenceExtractor,
        analyst: PolicyAnalyst,
        drafter: LetterDrafter,
    ) -> None:
        self.settings = settings
        self.store = store
        self.extractor = extractor
        self.analyst = analyst
        self.drafter = drafter
        self._state = WizardState(case=_new_case(Language(settings.default_language)))
        self._last_saved_fingerprint = ""
        self._autosave_task: Optional[asyncio.Task] = None
        self._autosave_enabled = False

    # Lifecycle

    async def start(self) -> None:
        """Start the periodic autosave task."""
        self._autosave_enabled = True
        await self._restart_autosave()

    async def close(self) -> None:
        self._autosave_enabled = False
        await self._cancel_autosave()

    async def _restart_autosave(self) -> None:
        await self._cancel_autosave()
        if self._autosave_enabled:
            self._autosave_task = asyncio.create_task(self._autosave_loop(self._state))

    async def _cancel_autosave(self) -> None:
        task, self._autosave_task = self._autosave_task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _autosave_loop(self, state: WizardState) -> None:
        while self._state is state:
            await asyncio.sleep(self.settings.autosave_interval_seconds)
            if self._state is not state:
                return
            await self.autosave_tick()

    # Read side

    def snapshot(self) -> WizardSnapshot:
        state = self._state
        return WizardSnapshot(
            step=state.step,
            case=state.case.model_copy(deep=True),
            stages=state.stages.model_copy(),
            error=state.error.to_stage_error() if state.error else None,
            use_web_search=state.use_web_search,
            is_processing=state.processing,
            is_reanalyzing=state.reanalyzing,
        )

    def letter_export(self) -> LetterExport:
        case = self._state.case
        if not case.generated_letter:
            raise ValidationFailed("No letter has been generated yet", case.id)
        return LetterExport(letter_filename(case), letter_filename(case, ascii_only=True), case.generated_letter)

    # Case lifecycle commands

    async def _replace_state(self, state: WizardState) -> None:
        self._state = state
        self._last_saved_fingerprint = ""
        await self._restart_autosave()

    async def start_new(self, language: Optional[Language] = None) -> WizardSnapshot:
        language = Language(language or self._state.case.user_language)
        await self._replace_state(
            WizardState(
                case=_new_case(language),
                step=WizardStep.UPLOADING_EVIDENCE,
                use_web_search=self._state.use_web_search,
            )
        )
        logger.info("Started new case", extra={"case_id": self._state.case.id, "language": language.value})
        return self.snapshot()

    async def load_case(self, case: Case) -> WizardSnapshot:
        """Resume a saved case at the furthest step its fields imply. No stage is invoked."""
        state = WizardState(case=case.model_copy(deep=True), use_web_search=self._state.use_web_search)
        if case.generated_letter:
            state.step = WizardStep.LETTER_READY
            state.stages = StageStatuses(
                extraction=StageStatus.DONE, analysis=StageStatus.DONE, drafting=StageStatus.DONE
            )
        elif case.policy_analysis:
            state.step = WizardStep.REVIEWING_ANALYSIS
            state.stages = StageStatuses(extraction=StageStatus.DONE, analysis=StageStatus.DONE)
        else:
            state.step = WizardStep.UPLOADING_EVIDENCE
        await self._replace_state(state)
        logger.info("Loaded case", extra={"case_id": case.id, "step": state.step.value})
        return self.snapshot()

    async def load_saved_case(self, case_id: str) -> WizardSnapshot:
        case = await asyncio.to_thread(self.store.get_case, case_id)
        return await self.load_case(case)

    async def start_from_template(self, template: Template) -> WizardSnapshot:
        data = template.data
        case = _new_case(self._state.case.user_language)
        case.user_notes = data.user_notes or ""
        case.extracted_data = ExtractedFacts(
            merchant_name=data.merchant_name or "",
            merchant_email=data.merchant_email or "",
            transaction_date=dt.date.today().isoformat(),
            amount="",
            currency=data.currency or "USD",
            issue_description=data.issue_description or "",
        )
        await self._replace_state(
            WizardState(
                case=case,
                step=WizardStep.REVIEWING_ANALYSIS,
                stages=StageStatuses(extraction=StageStatus.DONE),
                use_web_search=self._state.use_web_search,
            )
        )
        logger.info("Started case from template", extra={"case_id": case.id, "template_id": template.id})
        return self.snapshot()

    def go_home(self) -> WizardSnapshot:
        self._state.step = WizardStep.WELCOME
        self._state.error = None
        return self.snapshot()

    # Evidence and settings commands

    def update_notes(self, notes: str) -> WizardSnapshot:
        self._state.case.user_notes = notes
        return self.snapshot()

    def set_web_search(self, enabled: bool) -> WizardSnapshot:
        self._state.use_web_search = enabled
        return self.snapshot()

    def set_language(self, language: Language) -> WizardSnapshot:
        self._state.case.user_language = Language(language)
        return self.snapshot()

    def add_link(self, url: str) -> WizardSnapshot:
        if not url.strip():
            raise ValidationFailed("Link must not be empty", self._state.case.id)
        self._state.case.evidence_files.append(new_link_item(url))
        return self.snapshot()

    def remove_evidence(self, evidence_id: str) -> WizardSnapshot:
        case = self._state.case
        remaining = [item for item in case.evidence_files if item.id != evidence_id]
        if len(remaining) == len(case.evidence_files):
            raise ValidationFailed(f"Evidence item {evidence_id} not found", case.id)
        case.evidence_files = remaining
        return self.snapshot()

    async def add_files(self, uploads: Iterable[PendingUpload]) -> UploadReport:
        """Encode uploads concurrently; one bad file does not abort the batch."""
        state = self._state
        max_bytes = self.settings.max_upload_bytes
        skipped: List[str] = []
        accepted = []
        for upload in uploads:
            if upload.size is not None and upload.size > max_bytes:
                skipped.append(upload.filename)
                continue
            item = new_pending_item(upload)
            state.case.evidence_files.append(item)
            accepted.append((item, upload))
        if skipped:
            logger.warning("Skipped oversized files", extra={"files": skipped, "max_bytes": max_bytes})

        added: List[str] = []
        failed: List[str] = []

        async def encode(item, upload: PendingUpload) -> None:
            try:
                data = await encode_upload(upload, max_bytes)
            except Exception:
                logger.exception("Failed to encode evidence", extra={"evidence_file": upload.filename})
                self._replace_item(state, item.model_copy(update={"upload_status": UploadStatus.FAILED}))
                failed.append(item.id)
            else:
                self._replace_item(
                    state,
                    item.model_copy(update={"data": data, "upload_status": UploadStatus.DONE, "upload_progress": 100}),
                )
                added.append(item.id)

        await asyncio.gather(*(encode(item, upload) for item, upload in accepted))
        logger.info(
            "Encoded evidence batch",
            extra={"case_id": state.case.id, "total": len(accepted), "done": len(added), "failed": len(failed)},
        )
        return UploadReport(added=added, failed=failed, skipped=skipped, snapshot=self.snapshot())

    @staticmethod
    def _replace_item(state: WizardState, updated) -> None:
        state.case.evidence_files = [
            updated if item.id == updated.id else item for item in state.case.evidence_files
        ]

    def update_extracted_field(self, field_name: str, value: str) -> WizardSnapshot:
        case = self._state.case
        if case.extracted_data is None:
            raise ValidationFailed("There is no extracted data to edit", case.id)
        attribute = EDITABLE_FACT_FIELDS.get(field_name) or (
            field_name if field_name in EDITABLE_FACT_FIELDS.values() else None
        )
        if attribute is None:
            raise ValidationFailed(f"Field {field_name} cannot be edited", case.id)
        setattr(case.extracted_data, attribute, value)
        return self.snapshot()

    # Pipeline commands

    async def start_processing(self) -> WizardSnapshot:
        """Run extraction then analysis for the current case."""
        state = self._state
        case = state.case
        if state.processing:
            raise ValidationFailed("Processing is already running", case.id)
        if state.step is not WizardStep.UPLOADING_EVIDENCE:
            raise ValidationFailed(f"Cannot start processing from step {state.step.value}", case.id)
        if not case.evidence_files and len(case.user_notes.strip()) < self.settings.min_notes_length:
            raise ValidationFailed(
                f"Provide at least one evidence item or {self.settings.min_notes_length} characters of notes",
                case.id,
            )

        state.error = None
        state.step = WizardStep.PROCESSING
        state.processing = True
        state.stages.extraction = StageStatus.ACTIVE
        state.stages.analysis = StageStatus.WAITING
        try:
            try:
                facts = await self.extractor.extract(
                    [item.model_copy() for item in case.evidence_files],
                    case.user_notes,
                    state.use_web_search,
                )
            except ExtractionFailed as exc:
                self._fail_processing(state, exc)
                return self.snapshot()
            if self._is_stale(state, "extraction"):
                return self.snapshot()

            case.extracted_data = facts
            case.policy_analysis = None
            case.generated_letter = None
            state.stages.extraction = StageStatus.DONE
            state.stages.analysis = StageStatus.ACTIVE

            try:
                analysis = await self.analyst.analyze(facts.model_copy(deep=True))
            except AnalysisFailed as exc:
                self._fail_processing(state, exc)
                return self.snapshot()
            if self._is_stale(state, "analysis"):
                return self.snapshot()

            case.policy_analysis = analysis
            state.stages.analysis = StageStatus.DONE
            state.step = WizardStep.REVIEWING_ANALYSIS
            logger.info("Processing finished", extra={"case_id": case.id})
        finally:
            state.processing = False
        return self.snapshot()

    def _fail_processing(self, state: WizardState, exc: PipelineError) -> None:
        # Both stage failures route back to the evidence step; committed facts stay on the case.
        exc.case_id = state.case.id
        if self._is_stale(state, exc.kind.value):
            return
        logger.warning(
            "Processing failed",
            exc_info=exc,
            extra={"case_id": state.case.id, "failure": exc.kind.value},
        )
        state.error = exc
        state.step = WizardStep.UPLOADING_EVIDENCE
        state.stages.extraction = StageStatus.WAITING
        state.stages.analysis = StageStatus.WAITING

    def _is_stale(self, state: WizardState, stage: str) -> bool:
        # Going back to Welcome abandons the in-flight stage as much as replacing the case does.
        if self._state is state and state.step is not WizardStep.WELCOME:
            return False
        logger.info(
            "Discarding result for replaced or abandoned case",
            extra={"case_id": state.case.id, "stage": stage},
        )
        return True

    async def refresh_analysis(self) -> WizardSnapshot:
        """Re-run the analyst on the current facts without leaving the review step."""
        state = self._state
        case = state.case
        if case.extracted_data is None:
            raise ValidationFailed("There is no extracted data to analyze", case.id)
        if state.reanalyzing:
            raise ValidationFailed("Analysis refresh is already running", case.id)
        if state.step is not WizardStep.REVIEWING_ANALYSIS:
            raise ValidationFailed(f"Cannot refresh analysis from step {state.step.value}", case.id)

        state.error = None
        state.reanalyzing = True
        state.stages.analysis = StageStatus.ACTIVE
        try:
            analysis = await self.analyst.analyze(case.extracted_data.model_copy(deep=True), refresh=True)
        except AnalysisFailed as exc:
            exc.case_id = case.id
            if not self._is_stale(state, "analysis"):
                logger.warning("Analysis refresh failed", exc_info=exc, extra={"case_id": case.id})
                state.error = exc
                state.stages.analysis = StageStatus.DONE if case.policy_analysis else StageStatus.WAITING
            return self.snapshot()
        finally:
            state.reanalyzing = False

        if not self._is_stale(state, "analysis"):
            case.policy_analysis = analysis
            state.stages.analysis = StageStatus.DONE
            logger.info("Analysis refreshed", extra={"case_id": case.id})
        return self.snapshot()

    async def generate_letter(self) -> WizardSnapshot:
        state = self._state
        case = state.case
        if state.processing or state.reanalyzing:
            raise ValidationFailed("Another stage is already running", case.id)
        if state.step is not WizardStep.REVIEWING_ANALYSIS:
            raise ValidationFailed(f"Cannot generate a letter from step {state.step.value}", case.id)
        facts = case.extracted_data
        if facts is None:
            raise ValidationFailed("There is no extracted data for the letter", case.id)
        missing = facts.missing_required()
        if missing:
            raise ValidationFailed(f"Missing required fields: {', '.join(missing)}", case.id)
        if case.policy_analysis is None:
            raise ValidationFailed("Run the policy analysis before drafting the letter", case.id)

        state.error = None
        state.step = WizardStep.GENERATING_LETTER
        state.stages.drafting = StageStatus.ACTIVE
        state.processing = True
        try:
            letter = await self.drafter.draft(
                facts.model_copy(deep=True),
                case.policy_analysis.model_copy(deep=True),
                case.user_language,
            )
        except DraftingFailed as exc:
            exc.case_id = case.id
            if not self._is_stale(state, "drafting"):
                logger.warning("Letter drafting failed", exc_info=exc, extra={"case_id": case.id})
                state.error = exc
                state.step = WizardStep.REVIEWING_ANALYSIS
                state.stages.drafting = StageStatus.WAITING
            return self.snapshot()
        finally:
            state.processing = False

        if self._is_stale(state, "drafting"):
            return self.snapshot()
        case.generated_letter = letter
        state.stages.drafting = StageStatus.DONE
        state.step = WizardStep.LETTER_READY
        await self._save(state)
        return self.snapshot()

    async def retry(self) -> WizardSnapshot:
        """Re-run only the stage named by the recorded failure."""
        state = self._state
        error = state.error
        if error is None:
            raise ValidationFailed("There is no failed step to retry", state.case.id)
        if isinstance(error, AnalysisFailed) and error.refresh:
            return await self.refresh_analysis()
        if isinstance(error, DraftingFailed):
            return await self.generate_letter()
        # Extraction and first-run analysis failures both go back to the evidence step.
        state.error = None
        state.step = WizardStep.UPLOADING_EVIDENCE
        return self.snapshot()

    # Persistence

    def _fingerprint(self, state: WizardState) -> str:
        case = state.case
        extracted = case.extracted_data.model_dump(mode="json", by_alias=True) if case.extracted_data else None
        return json.dumps(
            {
                "id": case.id,
                "notes": case.user_notes,
                "extracted": extracted,
                "filesCount": len(case.evidence_files),
                "step": state.step.value,
            },
            sort_keys=True,
        )

    async def _save(self, state: WizardState) -> bool:
        case = state.case
        if case.created_at is None:
            case.created_at = _now_ms()
        fingerprint = self._fingerprint(state)
        try:
            await asyncio.to_thread(self.store.save_case, case.model_copy(deep=True))
        except (sqlite3.Error, OSError):
            logger.exception("Failed to save case", extra={"case_id": case.id})
            return False
        if self._state is state:
            self._last_saved_fingerprint = fingerprint
        return True

    async def autosave_tick(self) -> bool:
        """Persist the case if it changed since the last save. Returns True when written."""
        state = self._state
        case = state.case
        if state.step is WizardStep.WELCOME:
            return False
        if not (case.evidence_files or case.user_notes.strip() or case.extracted_data):
            return False
        if self._fingerprint(state) == self._last_saved_fingerprint:
            return False
        saved = await self._save(state)
        if saved:
            logger.info("Autosaved case", extra={"case_id": case.id, "step": state.step.value})
        return saved

    async def list_history(self) -> List[Case]:
        return await asyncio.to_thread(self.store.list_cases)

    async def delete_case(self, case_id: str) -> None:
        await asyncio.to_thread(self.store.delete_case, case_id)

    # Templates

    async def save_template(self, name: str) -> Template:
        name = name.strip()
        case = self._state.case
        if not name:
            raise ValidationFailed("Template name must not be empty", case.id)
        facts = case.extracted_data or ExtractedFacts()
        template = Template(
            id=uuid.uuid4().hex,
            name=name,
            created_at=_now_ms(),
            data=TemplateData(
                merchant_name=facts.merchant_name,
                merchant_email=facts.merchant_email or "",
                issue_description=facts.issue_description,
                user_notes=case.user_notes,
                currency=facts.currency,
            ),
        )
        await asyncio.to_thread(self.store.save_template, template)
        logger.info("Saved template", extra={"template_id": template.id, "case_id": case.id})
        return template

    async def start_from_saved_template(self, template_id: str) -> WizardSnapshot:
        template = await asyncio.to_thread(self.store.get_template, template_id)
        return await self.start_from_template(template)

    async def list_templates(self) -> List[Template]:
        return await asyncio.to_thread(self.store.list_templates)

    async def delete_template(self, template_id: str) -> None:
        await asyncio.to_thread(self.store.delete_template, template_id)
