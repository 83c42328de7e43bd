"""
Vyapar sales workbook source.

The workbook arrives base64 encoded in the trigger body. Only two sheets
matter: "Sale Report" (two banner rows above the header) and "Sale Items".
"""

import base64
import binascii
import io
from typing import Any, Dict, Iterator, List, Optional, TypedDict

import pandas as pd

from sales_sync.errors import SourceFormatError
from sales_sync.extract.base import SyncWindow
from sales_sync.utils.logging_utils import log_progress

SALE_REPORT_SHEET = "Sale Report"
SALE_ITEMS_SHEET = "Sale Items"
# Zero-based row holding the Sale Report column names
SALE_REPORT_HEADER_ROW = 2


class VyaparWorkbook(TypedDict):
    file_name: Any
    sale_report: List[Dict[str, Any]]
    sale_items: List[Dict[str, Any]]


def decode_upload(file_base64: str) -> bytes:
    """
    Decode a base64 upload, accepting an optional data-URL prefix.

    Raises:
        SourceFormatError: If the payload is not valid base64
    """
    payload = file_base64.split(",", 1)[1] if "," in file_base64 else file_base64
    try:
        return base64.b64decode(payload.strip(), validate=False)
    except (binascii.Error, ValueError) as e:
        raise SourceFormatError(f"file_base64 is not valid base64: {e}")


def _sheet_records(excel: pd.ExcelFile, sheet: str, header: int = 0) -> List[Dict[str, Any]]:
    frame = excel.parse(sheet_name=sheet, header=header, dtype=object)
    frame.columns = [str(column).strip() for column in frame.columns]
    frame = frame.dropna(how="all")
    # None instead of NaN so downstream blank checks see plain Python values
    frame = frame.astype(object).where(pd.notna(frame), None)
    return frame.to_dict("records")


class VyaparWorkbookSource:
    """Record source over one uploaded workbook; yields a single workbook record."""

    channel = "vyapar"

    def __init__(self, file_base64: str, file_name: Optional[str] = None):
        self.file_base64 = file_base64
        self.file_name = file_name

    def read(self) -> VyaparWorkbook:
        content = decode_upload(self.file_base64)
        try:
            excel = pd.ExcelFile(io.BytesIO(content), engine="openpyxl")
        except Exception as e:
            raise SourceFormatError(f"Could not open the uploaded workbook: {e}")

        with excel:
            missing = [
                sheet
                for sheet in (SALE_REPORT_SHEET, SALE_ITEMS_SHEET)
                if sheet not in excel.sheet_names
            ]
            if missing:
                raise SourceFormatError(
                    'Expected sheets "Sale Report" and "Sale Items" were not found in the file'
                )
            sale_report = _sheet_records(excel, SALE_REPORT_SHEET, header=SALE_REPORT_HEADER_ROW)
            sale_items = _sheet_records(excel, SALE_ITEMS_SHEET)

        log_progress(
            "Fetching - vyapar",
            f'Found {len(sale_report)} rows in "{SALE_REPORT_SHEET}" and '
            f'{len(sale_items)} rows in "{SALE_ITEMS_SHEET}"',
            file_name=self.file_name,
        )
        return VyaparWorkbook(
            file_name=self.file_name, sale_report=sale_report, sale_items=sale_items
        )

    def iter_records(self, window: Optional[SyncWindow] = None) -> Iterator[VyaparWorkbook]:
        yield self.read()
