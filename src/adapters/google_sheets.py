"""
Google Sheets implementation of TabularStore (Sheets API v4 values endpoints).
"""

import logging
from typing import Any, Optional
from urllib.parse import quote

from .base import TabularStore
from .google_http import GoogleApiClient


logger = logging.getLogger(__name__)

SHEETS_API_URL = "https://sheets.googleapis.com/v4/spreadsheets"


def column_letter(column: int) -> str:
    """1 -> A, 26 -> Z, 27 -> AA."""
    if column < 1:
        raise ValueError(f"Column must be >= 1, got {column}")
    letters = ""
    while column:
        column, remainder = divmod(column - 1, 26)
        letters = chr(ord("A") + remainder) + letters
    return letters


def a1_range(sheet_name: str, row: int, column: int, num_rows: int = 1, num_columns: int = 1) -> str:
    """A1 notation for a rectangular block, e.g. 'Main Roster'!B2:D7."""
    sheet = "'" + sheet_name.replace("'", "''") + "'"
    start = f"{column_letter(column)}{row}"
    if num_rows == 1 and num_columns == 1:
        return f"{sheet}!{start}"
    end = f"{column_letter(column + num_columns - 1)}{row + num_rows - 1}"
    return f"{sheet}!{start}:{end}"


class GoogleSheetsTable(TabularStore):
    """
    One sheet of a spreadsheet.

    The whole-sheet read behind last_row, last_column and header_row is
    fetched once and reused until the next write through this table.
    """

    def __init__(self, client: GoogleApiClient, spreadsheet_id: str, sheet_name: str):
        self.client = client
        self.spreadsheet_id = spreadsheet_id
        self.sheet_name = sheet_name
        self._sheet_values: Optional[list[list]] = None

    def _values_url(self, range_: str) -> str:
        return f"{SHEETS_API_URL}/{self.spreadsheet_id}/values/{quote(range_, safe='')}"

    def _get_values(self, range_: str) -> list[list]:
        data = self.client.request(
            "GET",
            self._values_url(range_),
            params={"valueRenderOption": "FORMATTED_VALUE"},
        )
        return data.get("values", [])

    def _put_values(self, range_: str, grid: list[list]) -> None:
        self._sheet_values = None
        self.client.request(
            "PUT",
            self._values_url(range_),
            params={"valueInputOption": "RAW"},
            json={"range": range_, "majorDimension": "ROWS", "values": grid},
        )

    def read_range(self, row: int, column: int, num_rows: int, num_columns: int) -> list[list]:
        values = self._get_values(a1_range(self.sheet_name, row, column, num_rows, num_columns))
        # The API trims trailing empty rows and cells
        grid = []
        for index in range(num_rows):
            source = values[index] if index < len(values) else []
            grid.append([source[i] if i < len(source) else "" for i in range(num_columns)])
        return grid

    def write_cell(self, row: int, column: int, value: Any) -> None:
        self._put_values(a1_range(self.sheet_name, row, column), [[value]])

    def write_range(self, row: int, column: int, grid: list[list]) -> None:
        if not grid:
            return
        num_columns = max(len(r) for r in grid)
        self._put_values(a1_range(self.sheet_name, row, column, len(grid), num_columns), grid)

    def _all_values(self) -> list[list]:
        if self._sheet_values is None:
            self._sheet_values = self._get_values("'" + self.sheet_name.replace("'", "''") + "'")
        return self._sheet_values

    def last_row(self) -> int:
        values = self._all_values()
        for index in range(len(values) - 1, -1, -1):
            if any(str(v).strip() for v in values[index]):
                return index + 1
        return 0

    def last_column(self) -> int:
        return max((len(row) for row in self._all_values()), default=0)

    def header_row(self) -> list:
        values = self._all_values()
        width = self.last_column()
        header = values[0] if values else []
        return [header[i] if i < len(header) else "" for i in range(width)]
