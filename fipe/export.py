"""Summaries and JSON/CSV exports of FIPE lookup results."""
from __future__ import annotations

import json
from dataclasses import astuple, dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .model import LookupResult

CSV_COLUMNS = (
    "code",
    "status",
    "error",
    "brand",
    "model",
    "modelYear",
    "fuel",
    "value",
    "referenceMonth",
)

# Upstream payload keys feeding the vehicle columns, in CSV order.
PAYLOAD_FIELDS = ("marca", "modelo", "anoModelo", "combustivel", "valor", "mesReferencia")

EXPORT_MIME_TYPES = {
    "csv": "text/csv;charset=utf-8",
    "json": "application/json;charset=utf-8",
}

FAILED_STATUS_LABEL = "erro"
DEFAULT_FAILURE_MESSAGE = "Lookup failed"

_CSV_SPECIAL_CHARS = ('"', ",", ";", "\n")


@dataclass(frozen=True)
class ExportRow:
    """One CSV line: a lookup result flattened with its first vehicle record."""

    code: str
    status: str
    error: str
    brand: str = ""
    model: str = ""
    model_year: str = ""
    fuel: str = ""
    value: str = ""
    reference_month: str = ""

    @classmethod
    def from_result(cls, result: LookupResult) -> "ExportRow":
        if not result.ok:
            return cls(
                code=result.code,
                status=str(result.status) if result.status else FAILED_STATUS_LABEL,
                error=result.error or DEFAULT_FAILURE_MESSAGE,
            )

        record = first_record(result.data)
        return cls(result.code, "ok", "", *(_field_text(record.get(key)) for key in PAYLOAD_FIELDS))


def first_record(data: Any) -> Mapping[str, Any]:
    """Return the primary vehicle record of a payload, or an empty mapping."""

    if isinstance(data, list):
        data = data[0] if data else None
    return data if isinstance(data, Mapping) else {}


def _field_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def summarize(results: Sequence[LookupResult]) -> Dict[str, int]:
    return {"count": len(results), "okCount": sum(1 for result in results if result.ok)}


def to_json(results: Iterable[LookupResult]) -> str:
    return json.dumps([result.to_dict() for result in results], indent=2, ensure_ascii=False)


def csv_escape(value: Any) -> str:
    """Quote ``value`` when it contains a quote, comma, semicolon or newline."""

    if value is None:
        return ""
    text = str(value)
    if any(char in text for char in _CSV_SPECIAL_CHARS):
        return '"' + text.replace('"', '""') + '"'
    return text


def to_csv(results: Iterable[LookupResult]) -> str:
    lines: List[str] = [",".join(CSV_COLUMNS)]
    for result in results:
        row = ExportRow.from_result(result)
        lines.append(",".join(csv_escape(field) for field in astuple(row)))
    return "\n".join(lines)


def export_filename(fmt: str, now: Optional[datetime] = None) -> str:
    """Timestamped download name, e.g. ``fipe-export-2024-05-01-13-45-00.csv``."""

    moment = now or datetime.now()
    return f"fipe-export-{moment.strftime('%Y-%m-%d-%H-%M-%S')}.{fmt}"


def render_export(
    results: Sequence[LookupResult],
    fmt: str,
    *,
    now: Optional[datetime] = None,
) -> Tuple[str, str, str]:
    """Return ``(content, filename, mime_type)`` for the requested format."""

    fmt = (fmt or "").strip().lower()
    if fmt == "csv":
        content = to_csv(results)
    elif fmt == "json":
        content = to_json(results)
    else:
        raise ValueError(f"Unsupported export format: {fmt!r}. Use 'csv' or 'json'.")
    return content, export_filename(fmt, now), EXPORT_MIME_TYPES[fmt]


__all__ = [
    "CSV_COLUMNS",
    "EXPORT_MIME_TYPES",
    "ExportRow",
    "csv_escape",
    "export_filename",
    "first_record",
    "render_export",
    "summarize",
    "to_csv",
    "to_json",
]
