"""Excel workbook ledger stored in OneDrive, one row per archived document."""

from __future__ import annotations

import io
import logging
import re
from typing import Optional
from urllib.parse import quote

from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill
from openpyxl.utils import get_column_letter

from .graph_client import GraphClient
from .models import LedgerRow

logger = logging.getLogger(__name__)

XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
LAST_COLUMN = get_column_letter(len(LedgerRow.HEADERS))

_ADDRESS_RE = re.compile(r"\$?[A-Z]+\$?(\d+)(?::\$?[A-Z]+\$?(\d+))?$")


def parse_row_numbers(address: str) -> tuple[int, int]:
    """Return (first, last) 1-based rows of an address like "'Sheet'!A7:J9"."""
    cells = address.rsplit("!", 1)[-1]
    match = _ADDRESS_RE.search(cells)
    if not match:
        raise ValueError(f"Could not parse row from range address {address!r}")
    first = int(match.group(1))
    last = int(match.group(2)) if match.group(2) else first
    return first, last


def build_ledger_template(sheet_name: str) -> bytes:
    """An empty workbook whose first row holds the bold, shaded column headers."""
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = sheet_name
    sheet.append(list(LedgerRow.HEADERS))
    fill = PatternFill(start_color="E6E6E6", end_color="E6E6E6", fill_type="solid")
    for cell in sheet[1]:
        cell.font = Font(bold=True)
        cell.fill = fill

    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


class ExcelLedger:
    """Append document rows to a workbook via the Graph workbook API."""

    def __init__(self, graph: GraphClient, sheet_name: str) -> None:
        self.graph = graph
        self.sheet_name = sheet_name

    def ensure_ledger(self, name: str) -> str:
        filename = name if name.lower().endswith(".xlsx") else f"{name}.xlsx"
        existing = self.graph.get_json(f"/me/drive/root:/{quote(filename)}", missing_ok=True)
        if existing:
            logger.info("Found existing ledger: %s (%s)", filename, existing["id"])
            return existing["id"]

        created = self.graph.put_content(
            f"/me/drive/root:/{quote(filename)}:/content",
            build_ledger_template(self.sheet_name),
            XLSX_MIME,
        )
        ledger_id = created.get("id")
        if not ledger_id:
            raise RuntimeError(f"OneDrive did not return a workbook id for {filename}")
        logger.info("Created new ledger: %s (%s)", filename, ledger_id)
        return ledger_id

    def append_row(self, ledger_id: str, row: LedgerRow) -> Optional[int]:
        worksheet = f"/me/drive/items/{ledger_id}/workbook/worksheets/{quote(self.sheet_name)}"
        used = self.graph.get_json(
            f"{worksheet}/usedRange(valuesOnly=true)", params={"$select": "address"}
        )
        _, last_row = parse_row_numbers(used["address"])
        target = last_row + 1

        updated = self.graph.patch_json(
            f"{worksheet}/range(address='A{target}:{LAST_COLUMN}{target}')",
            {"values": [row.values()]},
        )
        address = updated.get("address")
        if not address:
            logger.warning("Workbook response did not include a range address; response=%s", updated)
            return None

        row_number, _ = parse_row_numbers(address)
        logger.info("Logged document to ledger at row %s: %s", row_number, row.file_name)
        return row_number
