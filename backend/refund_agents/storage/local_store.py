import json
import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List

from refund_agents.schemas.case import Case, Template
from refund_agents.schemas.chat import ChatMessage

logger = logging.getLogger(__name__)

TABLES = ("cases", "templates", "chat_history")


class RecordNotFoundError(KeyError):
    """Raised when a case or template id is not stored."""


class LocalStore:
    """SQLite-backed key-value store for cases, templates, and the chat transcript."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path)
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _init_db(self) -> None:
        with self._connect() as conn:
            for table in TABLES:
                conn.execute(
                    f"""
                    CREATE TABLE IF NOT EXISTS {table} (
                        id TEXT PRIMARY KEY,
                        sort_key INTEGER NOT NULL,
                        payload TEXT NOT NULL
                    )
                    """
                )
                conn.execute(f"CREATE INDEX IF NOT EXISTS idx_{table}_sort ON {table}(sort_key)")

    def _put(self, table: str, record_id: str, sort_key: int, payload: str) -> None:
        with self._connect() as conn:
            conn.execute(
                f"INSERT OR REPLACE INTO {table} (id, sort_key, payload) VALUES (?, ?, ?)",
                (record_id, sort_key, payload),
            )

    def _all(self, table: str, descending: bool) -> List[str]:
        order = "DESC" if descending else "ASC"
        with self._connect() as conn:
            rows = conn.execute(f"SELECT payload FROM {table} ORDER BY sort_key {order}, rowid {order}").fetchall()
        return [row[0] for row in rows]

    def _delete(self, table: str, record_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(f"DELETE FROM {table} WHERE id = ?", (record_id,))
        return cursor.rowcount > 0

    # Cases

    def save_case(self, case: Case) -> None:
        if case.created_at is None:
            raise ValueError("Case must have created_at before it is persisted")
        self._put("cases", case.id, case.created_at, case.model_dump_json(by_alias=True, exclude_none=True))
        logger.info("Saved case", extra={"case_id": case.id})

    def list_cases(self) -> List[Case]:
        return [Case.model_validate_json(payload) for payload in self._all("cases", descending=True)]

    def get_case(self, case_id: str) -> Case:
        with self._connect() as conn:
            row = conn.execute("SELECT payload FROM cases WHERE id = ?", (case_id,)).fetchone()
        if row is None:
            raise RecordNotFoundError(case_id)
        return Case.model_validate_json(row[0])

    def delete_case(self, case_id: str) -> None:
        if not self._delete("cases", case_id):
            raise RecordNotFoundError(case_id)
        logger.info("Deleted case", extra={"case_id": case_id})

    # Templates

    def save_template(self, template: Template) -> None:
        self._put("templates", template.id, template.created_at, template.model_dump_json(by_alias=True))

    def list_templates(self) -> List[Template]:
        return [Template.model_validate_json(payload) for payload in self._all("templates", descending=True)]

    def get_template(self, template_id: str) -> Template:
        with self._connect() as conn:
            row = conn.execute("SELECT payload FROM templates WHERE id = ?", (template_id,)).fetchone()
        if row is None:
            raise RecordNotFoundError(template_id)
        return Template.model_validate_json(row[0])

    def delete_template(self, template_id: str) -> None:
        if not self._delete("templates", template_id):
            raise RecordNotFoundError(template_id)

    # Chat transcript

    def append_chat_message(self, message: ChatMessage) -> None:
        with self._connect() as conn:
            row = conn.execute("SELECT COALESCE(MAX(sort_key), 0) FROM chat_history").fetchone()
            conn.execute(
                "INSERT OR REPLACE INTO chat_history (id, sort_key, payload) VALUES (?, ?, ?)",
                (message.id, row[0] + 1, json.dumps(message.model_dump(by_alias=True))),
            )

    def list_chat_messages(self) -> List[ChatMessage]:
        return [ChatMessage.model_validate_json(payload) for payload in self._all("chat_history", descending=False)]

    def clear_chat_history(self) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM chat_history")
        logger.info("Cleared chat history")
