"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets can back the ledger because:
1. Users can view their accounts and transactions directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)

TRADEOFFS:
- Not suitable for high-volume data (we're fine for personal use)
- No transactions across rows (the rule engine compensates failed legs)
- Limited query capabilities (we filter in Python)

Each ledger table is one worksheet whose first row holds the column names.
"""

import json
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

import gspread
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from cashboard.config import get_settings
from cashboard.models.audit import AuditEvent, AuditEventType, AuditSeverity
from cashboard.models.finance import new_id
from cashboard.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    LedgerStoreInterface,
    LedgerTable,
    NotFoundError,
    StorageError,
)


# Column layout per ledger table
TABLE_COLUMNS: dict[LedgerTable, list[str]] = {
    LedgerTable.ACCOUNTS: [
        "id", "name", "type", "balance", "color", "icon",
    ],
    LedgerTable.GOALS: [
        "id", "name", "target_amount", "current_amount", "deadline", "color", "icon",
    ],
    LedgerTable.TRANSACTIONS: [
        "id", "date", "description", "amount", "type", "category",
        "account_id", "to_account_id", "goal_id",
        "is_recurring", "recurring_frequency", "rule_id",
    ],
    LedgerTable.CATEGORIES: [
        "id", "name", "type", "color", "icon", "budget", "is_custom",
    ],
}

# Column mappings for Audit sheet
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
]


def _cell(value: Any) -> str:
    """Render a record value as a sheet cell."""
    if value is None:
        return ""
    return str(value)


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def _get_or_create(self, title: str, columns: list[str], rows: int) -> gspread.Worksheet:
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            # Create the sheet with headers
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet

    def get_table_sheet(self, table: LedgerTable) -> gspread.Worksheet:
        """Get or create the worksheet of a ledger table."""
        titles = {
            LedgerTable.ACCOUNTS: self._settings.accounts_sheet_name,
            LedgerTable.GOALS: self._settings.goals_sheet_name,
            LedgerTable.TRANSACTIONS: self._settings.transactions_sheet_name,
            LedgerTable.CATEGORIES: self._settings.categories_sheet_name,
        }
        return self._get_or_create(titles[table], TABLE_COLUMNS[table], rows=1000)

    def get_audit_sheet(self) -> gspread.Worksheet:
        """Get or create the Audit worksheet."""
        return self._get_or_create(
            self._settings.audit_sheet_name,
            AUDIT_COLUMNS,
            rows=5000,  # More rows for audit log
        )


class GoogleSheetsLedgerStore(LedgerStoreInterface):
    """
    Google Sheets implementation of the ledger store.

    One record per row. Values are stored as text and parsed back by the models.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_record(self, header: list[str], row: list) -> dict[str, Any]:
        """Convert a spreadsheet row to a record, blank cells become None."""
        record = {}
        for idx, column in enumerate(header):
            value = row[idx] if idx < len(row) else ""
            record[column] = value if value != "" else None
        return record

    def _find_row(self, all_rows: list[list], record_id: str) -> Optional[int]:
        """1-based sheet row index of a record, skipping the header."""
        for idx, row in enumerate(all_rows[1:], start=2):
            if row and row[0] == record_id:
                return idx
        return None

    async def read_all(
        self,
        table: LedgerTable,
        filters: Optional[dict[str, Any]] = None,
    ) -> list[dict[str, Any]]:
        try:
            all_rows = self._client.get_table_sheet(table).get_all_values()
        except Exception as e:
            raise StorageError(f"Failed to read {table.value}: {e}")

        if not all_rows:
            return []

        header, records = all_rows[0], []
        for row in all_rows[1:]:
            if not row or not row[0]:  # Skip empty rows
                continue
            record = self._row_to_record(header, row)
            if all(_cell(record.get(k)) == _cell(v) for k, v in (filters or {}).items()):
                records.append(record)
        return records

    async def get_by_id(
        self,
        table: LedgerTable,
        record_id: str,
    ) -> Optional[dict[str, Any]]:
        records = await self.read_all(table, {"id": record_id})
        return records[0] if records else None

    async def insert(
        self,
        table: LedgerTable,
        record: dict[str, Any],
    ) -> dict[str, Any]:
        stored = dict(record)
        stored["id"] = stored.get("id") or new_id()
        try:
            sheet = self._client.get_table_sheet(table)
            if self._find_row(sheet.get_all_values(), stored["id"]) is not None:
                raise DuplicateError(f"{table.value} record already exists: {stored['id']}")
            row = [_cell(stored.get(column)) for column in TABLE_COLUMNS[table]]
            sheet.append_row(row, value_input_option="RAW")
        except DuplicateError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to insert into {table.value}: {e}")
        return stored

    async def update_by_id(
        self,
        table: LedgerTable,
        record_id: str,
        fields: dict[str, Any],
    ) -> bool:
        try:
            sheet = self._client.get_table_sheet(table)
            all_rows = sheet.get_all_values()
            row_idx = self._find_row(all_rows, record_id)
            if row_idx is None:
                raise NotFoundError(f"{table.value} record not found: {record_id}")

            header = all_rows[0]
            for column, value in fields.items():
                sheet.update_cell(row_idx, header.index(column) + 1, _cell(value))
            return True
        except NotFoundError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update {table.value}: {e}")

    async def delete_by_id(
        self,
        table: LedgerTable,
        record_id: str,
    ) -> bool:
        try:
            sheet = self._client.get_table_sheet(table)
            row_idx = self._find_row(sheet.get_all_values(), record_id)
            if row_idx is None:
                raise NotFoundError(f"{table.value} record not found: {record_id}")
            sheet.delete_rows(row_idx)
            return True
        except NotFoundError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to delete from {table.value}: {e}")


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            entity_type=safe_get(4) or None,
            entity_id=safe_get(5) or None,
            correlation_id=UUID(safe_get(6)) if safe_get(6) else None,
            description=safe_get(7),
            details=json.loads(safe_get(8)) if safe_get(8) else {},
            error_message=safe_get(9) or None,
            is_user_action=safe_get(10).lower() == "true",
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            sheet = self._client.get_audit_sheet()
            sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            raise StorageError(f"Failed to append audit event: {e}")

    async def _all_events(self) -> list[AuditEvent]:
        try:
            all_rows = self._client.get_audit_sheet().get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to read audit log: {e}")
        events = []
        for row in all_rows:
            if not row or not row[0]:
                continue
            try:
                events.append(self._row_to_event(row))
            except (ValueError, json.JSONDecodeError):
                continue  # Skip malformed rows
        return events

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        events = await self._all_events()
        return [
            e for e in events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        events = await self._all_events()
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
