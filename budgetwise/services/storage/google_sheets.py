"""
Google Sheets Storage Implementation

DESIGN DECISION: BudgetWise's remote tables live in one spreadsheet.
Every table is a worksheet of two columns, the row id and the full row
as JSON, so new columns in the app never require a sheet migration.
The AuditLog worksheet sits in the same spreadsheet, one event per row.

TRADEOFFS:
- Each call is its own write; a restore touching several tables is not atomic
- Reads load the whole worksheet and filter with apply_query
"""

import json
from typing import Any, Optional
from uuid import uuid4

import gspread
import structlog
from google.oauth2.service_account import Credentials

from budgetwise.config import GoogleSheetsSettings, get_settings
from budgetwise.models.audit import AUDIT_COLUMNS, AuditEvent
from budgetwise.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    Row,
    StorageError,
    TableStoreInterface,
)
from budgetwise.services.storage.query import apply_query, matches_filters
from budgetwise.services.storage.retrying import remote_retry


logger = structlog.get_logger("budgetwise.storage.google_sheets")

SCOPES = [
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/drive",
]

TABLE_COLUMNS = ["id", "row_json"]


class GoogleSheetsClient:
    """Service-account session on the configured spreadsheet, with worksheets cached by title."""

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._worksheets: dict[str, gspread.Worksheet] = {}
        self._settings = settings or get_settings().google_sheets

    @remote_retry
    def connect(self) -> gspread.Client:
        if self._client is not None:
            return self._client

        path = self._settings.credentials_path
        try:
            credentials = Credentials.from_service_account_file(path, scopes=SCOPES)
            self._client = gspread.authorize(credentials)
        except FileNotFoundError:
            raise ConnectionError(f"Service account file missing: {path}")
        except Exception as e:
            raise ConnectionError(f"Google Sheets authorization failed: {e}")
        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        if self._spreadsheet is None:
            spreadsheet_id = self._settings.spreadsheet_id
            try:
                self._spreadsheet = self.connect().open_by_key(spreadsheet_id)
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(f"No spreadsheet with id {spreadsheet_id}")
        return self._spreadsheet

    def get_worksheet(
        self,
        title: str,
        headers: list[str],
        rows: int = 1000,
    ) -> gspread.Worksheet:
        """Get or create a worksheet, writing headers on creation."""
        if title not in self._worksheets:
            spreadsheet = self.get_spreadsheet()
            try:
                sheet = spreadsheet.worksheet(title)
            except gspread.WorksheetNotFound:
                sheet = spreadsheet.add_worksheet(
                    title=title,
                    rows=rows,
                    cols=len(headers),
                )
                sheet.append_row(headers)
            self._worksheets[title] = sheet
        return self._worksheets[title]

    def get_table_sheet(self, table: str) -> gspread.Worksheet:
        return self.get_worksheet(table, TABLE_COLUMNS)

    def get_audit_sheet(self) -> gspread.Worksheet:
        # More rows for the audit log
        return self.get_worksheet(
            self._settings.audit_sheet_name, AUDIT_COLUMNS, rows=5000
        )


class GoogleSheetsTableStore(TableStoreInterface):
    """
    Google Sheets implementation of the remote table store.

    Each row is stored as its id plus the JSON-encoded row. Reads load the
    whole worksheet and filter in Python.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _read_rows(self, table: str) -> list[tuple[int, Row]]:
        """Return (sheet row number, row) pairs, skipping malformed rows."""
        sheet = self._client.get_table_sheet(table)
        records = []
        # Row 1 is the header
        for idx, values in enumerate(sheet.get_all_values()[1:], start=2):
            if len(values) < 2 or not values[0]:
                continue
            try:
                row = json.loads(values[1])
            except ValueError:
                logger.warning("malformed_row_skipped", table=table, row=idx)
                continue
            if isinstance(row, dict):
                records.append((idx, row))
        return records

    @staticmethod
    def _to_cells(row: Row) -> list[str]:
        return [str(row["id"]), json.dumps(row, default=str)]

    @remote_retry
    async def select(
        self,
        table: str,
        filters: Optional[dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[Row]:
        try:
            rows = [row for _, row in self._read_rows(table)]
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to read {table}: {e}")
        return apply_query(rows, filters, order_by, descending, limit)

    @remote_retry
    async def insert(self, table: str, rows: list[Row]) -> list[Row]:
        try:
            existing_ids = {str(row.get("id")) for _, row in self._read_rows(table)}
            prepared = []
            for row in rows:
                new_row = dict(row)
                new_row.setdefault("id", str(uuid4()))
                if str(new_row["id"]) in existing_ids:
                    raise DuplicateError(
                        f"Duplicate id {new_row['id']} in table {table}"
                    )
                existing_ids.add(str(new_row["id"]))
                prepared.append(new_row)

            if prepared:
                sheet = self._client.get_table_sheet(table)
                sheet.append_rows(
                    [self._to_cells(row) for row in prepared],
                    value_input_option="RAW",
                )
            return prepared
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to insert into {table}: {e}")

    def _write_row(self, sheet: gspread.Worksheet, idx: int, row: Row) -> None:
        for col_idx, value in enumerate(self._to_cells(row), start=1):
            sheet.update_cell(idx, col_idx, value)

    @remote_retry
    async def upsert(
        self,
        table: str,
        rows: list[Row],
        on_conflict: str = "id",
    ) -> list[Row]:
        try:
            sheet = self._client.get_table_sheet(table)
            existing = self._read_rows(table)
            written = []
            for row in rows:
                key = row.get(on_conflict)
                match = next(
                    (
                        (idx, current)
                        for idx, current in existing
                        if key is not None and current.get(on_conflict) == key
                    ),
                    None,
                )
                if match:
                    idx, current = match
                    merged = {**current, **row}
                    self._write_row(sheet, idx, merged)
                    written.append(merged)
                else:
                    new_row = dict(row)
                    new_row.setdefault("id", str(uuid4()))
                    sheet.append_row(self._to_cells(new_row), value_input_option="RAW")
                    written.append(new_row)
            return written
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to upsert into {table}: {e}")

    @remote_retry
    async def update(
        self,
        table: str,
        values: Row,
        filters: dict[str, Any],
    ) -> list[Row]:
        try:
            sheet = self._client.get_table_sheet(table)
            updated = []
            for idx, row in self._read_rows(table):
                if matches_filters(row, filters):
                    row.update(values)
                    self._write_row(sheet, idx, row)
                    updated.append(row)
            return updated
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update {table}: {e}")

    @remote_retry
    async def delete(self, table: str, filters: dict[str, Any]) -> int:
        try:
            sheet = self._client.get_table_sheet(table)
            targets = [
                idx for idx, row in self._read_rows(table)
                if matches_filters(row, filters)
            ]
            # Bottom-up so earlier row numbers stay valid
            for idx in reversed(targets):
                sheet.delete_rows(idx)
            return len(targets)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to delete from {table}: {e}")


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """Append-only audit trail on the AuditLog worksheet."""

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    @staticmethod
    def _row_to_event(row: list) -> AuditEvent:
        cells = {
            column: value
            for column, value in zip(AUDIT_COLUMNS, row)
            if value != ""
        }
        details = cells.pop("details_json", None)
        flag = cells.pop("is_user_action", "")
        return AuditEvent.model_validate({
            "description": "",
            **cells,
            "details": json.loads(details) if details else {},
            "is_user_action": flag.lower() == "true",
        })

    async def append_event(self, event: AuditEvent) -> bool:
        try:
            sheet = self._client.get_audit_sheet()
            sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            # AuditLogger treats False as "logged locally only"
            logger.warning(
                "audit_persist_failed",
                event_id=str(event.event_id),
                event_type=event.event_type.value,
                error=str(e),
            )
            return False

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Newest first. Rows that no longer validate are skipped."""
        try:
            rows = self._client.get_audit_sheet().get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to read the audit log: {e}")

        events = []
        for row in rows:
            if not row or not row[0]:
                continue
            try:
                events.append(self._row_to_event(row))
            except ValueError:
                logger.debug("audit_row_skipped", event_id=row[0])
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
