"""
Spreadsheet extractor using openpyxl and pandas.

.xlsx workbooks are read with openpyxl; legacy .xls workbooks and CSV
files go through pandas.
"""

from io import BytesIO
from typing import Any, ClassVar

import pandas as pd
from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from gradeflow.extractors.base import DocumentExtractor, ExtractionError, file_extension
from gradeflow.models import ExtractedContent


class ExcelExtractor(DocumentExtractor):
    """
    Converts every sheet into a `=== Sheet: name ===` block of
    pipe-separated rows.
    """

    SUPPORTED_EXTENSIONS: ClassVar[tuple[str, ...]] = (".xlsx", ".xls", ".csv")
    MIME_TYPE: ClassVar[str] = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

    def extract(self, data: bytes, filename: str) -> ExtractedContent:
        self._validate_data(data, filename)

        try:
            extension = file_extension(filename)
            if extension == ".xlsx":
                sheets = self._extract_xlsx(data)
            elif extension == ".xls":
                sheets = self._extract_with_pandas(
                    pd.read_excel(BytesIO(data), sheet_name=None, engine="xlrd")
                )
            else:
                sheets = self._extract_with_pandas({"csv": pd.read_csv(BytesIO(data))})

            content = "\n\n".join(sheets)
            if not content.strip():
                raise ExtractionError("Spreadsheet contains no data", filename)

            return self._create_result(content, data, filename, sheet_count=len(sheets))

        except InvalidFileException as e:
            raise ExtractionError(
                "File is not a valid Excel document or is corrupted", filename, cause=e
            ) from e
        except ExtractionError:
            raise
        except Exception as e:
            raise ExtractionError(f"Unexpected error: {e}", filename, cause=e) from e

    def _extract_xlsx(self, data: bytes) -> list[str]:
        workbook = load_workbook(BytesIO(data), read_only=True, data_only=True)
        try:
            sheets = [
                self._extract_sheet(workbook[name], name) for name in workbook.sheetnames
            ]
        finally:
            workbook.close()
        return [sheet for sheet in sheets if sheet]

    def _extract_with_pandas(self, frames: dict[str, pd.DataFrame]) -> list[str]:
        return [
            f"=== Sheet: {name} ===\n" + df.to_string(index=False)
            for name, df in frames.items()
            if not df.empty
        ]

    def _extract_sheet(self, sheet: Any, sheet_name: str) -> str:
        rows: list[str] = []
        for row in sheet.iter_rows(values_only=True):
            cells = [str(cell) if cell is not None else "" for cell in row]
            if any(cell.strip() for cell in cells):
                rows.append(" | ".join(cells))

        if rows:
            return f"=== Sheet: {sheet_name} ===\n" + "\n".join(rows)
        return ""
