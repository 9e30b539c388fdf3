"""
ldapaudit Export

Writes result sequences to CSV or JSON files.
"""

from ldapaudit.export.exporters import (
    CsvExporter,
    Exporter,
    JsonExporter,
    default_output_path,
    export_results,
    get_exporter,
)

__all__ = [
    "Exporter",
    "CsvExporter",
    "JsonExporter",
    "get_exporter",
    "default_output_path",
    "export_results",
]
