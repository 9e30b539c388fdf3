"""
ldapaudit Result Exporters

Persists a result sequence to disk.

Formats:
- csv: TestName,Success,Details,Error,Timestamp,Duration
- json: summary counts plus one object per result

The password of a test case is never written by either format.
"""

from __future__ import annotations

import csv
import json
import os
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Sequence

import attrs
import structlog

from ldapaudit.core.config import OUTPUT_FORMATS
from ldapaudit.core.exceptions import ConfigurationError, ExportError
from ldapaudit.core.types import TestResult

logger = structlog.get_logger()

CSV_FIELDS = ["TestName", "Success", "Details", "Error", "Timestamp", "Duration"]
CSV_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

OUTPUT_FILE_PREFIX = "LDAP_Test_Results"


class Exporter(ABC):
    """Abstract base for result exporters."""

    extension: str = ""

    @abstractmethod
    def export(self, results: Sequence[TestResult], path: str) -> str:
        """
        Write results to `path`.

        Returns:
            The path written

        Raises:
            ExportError: The file could not be written
        """


@attrs.define
class CsvExporter(Exporter):
    """
    Export results as CSV.

    Example:
        CsvExporter().export(results, "results.csv")
    """

    extension = "csv"

    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    @staticmethod
    def to_row(result: TestResult) -> Dict[str, Any]:
        """Flatten one result into a CSV row."""
        return {
            "TestName": result.test_name,
            "Success": result.success,
            "Details": result.details or "",
            "Error": result.error or "",
            "Timestamp": result.timestamp.strftime(CSV_TIMESTAMP_FORMAT),
            "Duration": round(result.duration_ms, 2),
        }

    def export(self, results: Sequence[TestResult], path: str) -> str:
        try:
            with open(path, "w", newline="", encoding="utf-8") as f:
                writer = csv.DictWriter(f, fieldnames=CSV_FIELDS)
                writer.writeheader()
                for result in results:
                    writer.writerow(self.to_row(result))
        except OSError as e:
            self._logger.error("export_failed", filepath=path, error=str(e))
            raise ExportError(f"Failed to write CSV results to {path}: {e}")

        self._logger.info("exported_csv", filepath=path, count=len(results))
        return path


@attrs.define
class JsonExporter(Exporter):
    """
    Export results as a JSON document.

    Layout:
        {
            "export_timestamp": "...",
            "total": 4, "passed": 3, "failed": 1,
            "results": [{...}, ...]
        }
    """

    extension = "json"

    indent: int = 2
    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    @staticmethod
    def to_document(
        results: Sequence[TestResult],
        exported_at: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        passed = sum(1 for r in results if r.success)
        return {
            "export_timestamp": (exported_at or datetime.now(timezone.utc)).isoformat(),
            "total": len(results),
            "passed": passed,
            "failed": len(results) - passed,
            "results": [r.to_dict() for r in results],
        }

    def export(self, results: Sequence[TestResult], path: str) -> str:
        data = self.to_document(results)
        try:
            with open(path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=self.indent, default=str)
        except OSError as e:
            self._logger.error("export_failed", filepath=path, error=str(e))
            raise ExportError(f"Failed to write JSON results to {path}: {e}")

        self._logger.info("exported_json", filepath=path, count=len(results))
        return path


# =============================================================================
# FACTORY FUNCTIONS
# =============================================================================


_EXPORTERS = {
    "csv": CsvExporter,
    "json": JsonExporter,
}


def get_exporter(output_format: str) -> Exporter:
    """
    Get the exporter for a format name.

    Raises:
        ConfigurationError: Unknown format
    """
    key = (output_format or "").strip().lower()
    if key not in _EXPORTERS:
        raise ConfigurationError(
            f"Unknown output format: {output_format!r} "
            f"(expected one of: {', '.join(OUTPUT_FORMATS)})"
        )
    return _EXPORTERS[key]()


def default_output_path(
    output_format: str,
    now: Optional[datetime] = None,
    directory: Optional[str] = None,
) -> str:
    """
    Build a timestamped output file name.

    Example:
        default_output_path("csv", datetime(2024, 5, 1, 13, 4, 5))
        -> "LDAP_Test_Results_20240501_130405.csv"
    """
    exporter = get_exporter(output_format)
    stamp = (now or datetime.now()).strftime("%Y%m%d_%H%M%S")
    filename = f"{OUTPUT_FILE_PREFIX}_{stamp}.{exporter.extension}"
    if directory:
        return os.path.join(directory, filename)
    return filename


def export_results(
    results: Sequence[TestResult],
    output_format: str,
    path: Optional[str] = None,
) -> str:
    """
    Export results, generating a file name when none is given.

    Returns:
        The path written
    """
    if path is None:
        path = default_output_path(output_format)
    return get_exporter(output_format).export(results, path)
