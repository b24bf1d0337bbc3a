"""
Google Sheets values client for spreadsheet-backed import profiles.

The client only reads cell values. It expects an already-issued bearer token;
issuing or refreshing credentials is handled outside the importer.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, List, Sequence
from urllib.parse import quote

import requests

from installhub.importer.errors import SourceReadError

DEFAULT_SHEETS_API_URL = "https://sheets.googleapis.com/v4"
DEFAULT_MAX_ROWS = 1000
DEFAULT_TIMEOUT = 30.0
LAST_COLUMN = "ZZ"


class SpreadsheetFetchError(SourceReadError):
    """Raised when the spreadsheet or sheet cannot be read."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def build_sheet_range(sheet_name: str, *, max_rows: int = DEFAULT_MAX_ROWS) -> str:
    """Return an A1 range covering the header plus ``max_rows`` data rows."""

    if " " in sheet_name or "'" in sheet_name:
        escaped = sheet_name.replace("'", "''")
        name = f"'{escaped}'"
    else:
        name = sheet_name
    return f"{name}!A1:{LAST_COLUMN}{int(max_rows) + 1}"


class GoogleSheetsClient:
    """Fetch raw cell values for a named sheet inside a spreadsheet."""

    def __init__(
        self,
        *,
        token: str | None = None,
        token_provider: Callable[[], str] | None = None,
        api_url: str = DEFAULT_SHEETS_API_URL,
        max_rows: int = DEFAULT_MAX_ROWS,
        timeout: float = DEFAULT_TIMEOUT,
        session: requests.Session | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._token = token
        self._token_provider = token_provider
        self.api_url = api_url.rstrip("/")
        self.max_rows = max(1, int(max_rows))
        self.timeout = timeout
        self.session = session or requests.Session()
        self.logger = logger or logging.getLogger(__name__)

    @classmethod
    def from_config(cls, config, **overrides) -> "GoogleSheetsClient":
        kwargs: dict[str, Any] = {
            "token": config.get("PARTNER_IMPORT_SHEETS_TOKEN"),
            "api_url": config.get("PARTNER_IMPORT_SHEETS_API_URL") or DEFAULT_SHEETS_API_URL,
            "max_rows": config.get("PARTNER_IMPORT_SHEETS_MAX_ROWS", DEFAULT_MAX_ROWS),
            "timeout": config.get("PARTNER_IMPORT_SHEETS_TIMEOUT", DEFAULT_TIMEOUT),
        }
        kwargs.update(overrides)
        return cls(**kwargs)

    # Public API -----------------------------------------------------------------

    def fetch_values(self, spreadsheet_id: str, sheet_name: str) -> List[List[Any]]:
        """Return the sheet's rows (header first) as lists of cell values."""

        actual_name = self.resolve_sheet_name(spreadsheet_id, sheet_name)
        sheet_range = build_sheet_range(actual_name, max_rows=self.max_rows)
        url = f"{self.api_url}/spreadsheets/{quote(spreadsheet_id, safe='')}/values/{quote(sheet_range, safe='')}"
        payload = self._get_json(url)
        values = payload.get("values") or []
        if not isinstance(values, list):
            raise SpreadsheetFetchError("Spreadsheet API returned an unexpected values payload.")
        self.logger.info(
            "Fetched spreadsheet values",
            extra={"spreadsheet_id": spreadsheet_id, "sheet_name": actual_name, "row_count": len(values)},
        )
        return values

    def resolve_sheet_name(self, spreadsheet_id: str, sheet_name: str) -> str:
        """Match ``sheet_name`` against the spreadsheet's tabs, ignoring case."""

        url = f"{self.api_url}/spreadsheets/{quote(spreadsheet_id, safe='')}"
        payload = self._get_json(url, params={"fields": "sheets.properties.title"})
        titles = self._sheet_titles(payload.get("sheets") or [])
        if sheet_name in titles:
            return sheet_name
        lowered = sheet_name.casefold()
        for title in titles:
            if title.casefold() == lowered:
                self.logger.info(
                    "Sheet name corrected",
                    extra={"spreadsheet_id": spreadsheet_id, "requested": sheet_name, "actual": title},
                )
                return title
        raise SpreadsheetFetchError(
            f'Sheet "{sheet_name}" not found. Available sheets: {", ".join(titles) or "none"}.'
        )

    # Internal helpers -----------------------------------------------------------

    @staticmethod
    def _sheet_titles(sheets: Sequence[Any]) -> list[str]:
        titles: list[str] = []
        for sheet in sheets:
            properties = sheet.get("properties") if isinstance(sheet, dict) else None
            title = properties.get("title") if isinstance(properties, dict) else None
            if title:
                titles.append(str(title))
        return titles

    def _auth_headers(self) -> dict[str, str]:
        token = self._token_provider() if self._token_provider is not None else self._token
        if not token:
            raise SpreadsheetFetchError("No spreadsheet access token is configured.")
        return {"Authorization": f"Bearer {token}", "Accept": "application/json"}

    def _get_json(self, url: str, *, params: dict[str, str] | None = None) -> dict[str, Any]:
        try:
            response = self.session.get(url, headers=self._auth_headers(), params=params, timeout=self.timeout)
        except requests.RequestException as exc:
            raise SpreadsheetFetchError(f"Spreadsheet API request failed: {exc}") from exc

        if response.status_code == 404:
            raise SpreadsheetFetchError(
                "Spreadsheet not found. Check the sheet id and that the spreadsheet exists.",
                status_code=404,
            )
        if response.status_code == 403:
            raise SpreadsheetFetchError(
                "Access denied to spreadsheet. Share it with the importer's service account.",
                status_code=403,
            )
        if not response.ok:
            message = f"Spreadsheet API returned HTTP {response.status_code}."
            try:
                error = response.json().get("error") or {}
                if isinstance(error, dict) and error.get("message"):
                    message = str(error["message"])
            except ValueError:
                pass
            self.logger.error(
                "Spreadsheet API request failed",
                extra={"status_code": response.status_code, "error": message},
            )
            raise SpreadsheetFetchError(message, status_code=response.status_code)

        try:
            payload = response.json()
        except ValueError as exc:
            raise SpreadsheetFetchError("Spreadsheet API returned invalid JSON.") from exc
        if not isinstance(payload, dict):
            raise SpreadsheetFetchError("Spreadsheet API returned an unexpected payload.")
        return payload
