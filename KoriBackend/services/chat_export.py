import enum
import json
from datetime import datetime
from typing import Any, Iterable, Optional

from KoriBackend.models.message_models import ThreadMessage


class ExportFormat(str, enum.Enum):
    JSON = "json"
    TXT = "txt"
    CSV = "csv"


CONTENT_TYPES = {
    ExportFormat.JSON: "application/json",
    ExportFormat.TXT: "text/plain",
    ExportFormat.CSV: "text/csv",
}

CSV_HEADER = "Index,Role,Timestamp,Content,TokenCount"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _csv_quote(value: Any) -> str:
    return '"' + str(value if value is not None else "").replace('"', '""') + '"'


def export_payload(chat, messages: Iterable[ThreadMessage], statistics: Optional[dict] = None) -> dict:
    return {
        "chatId": chat.id,
        "title": chat.title,
        "createdAt": _iso(chat.created_at),
        "messages": [
            {
                "role": m.role,
                "content": m.content,
                "timestamp": _iso(m.timestamp),
                "metadata": {
                    "tokenCount": m.token_count,
                    "processingTime": m.processing_time,
                    "model": m.model,
                },
            }
            for m in messages
        ],
        "statistics": statistics,
    }


def format_as_json(payload: dict) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False)


def format_as_text(payload: dict) -> str:
    lines = [f"Chat: {payload.get('title') or ''}", f"Created: {payload.get('createdAt') or ''}", ""]
    for index, msg in enumerate(payload["messages"], start=1):
        lines.append(f"{index}. [{msg['role'].upper()}] ({msg['timestamp']})")
        lines.append(msg["content"])
        lines.append("")
    return "\n".join(lines) + "\n"


# One header line plus one line per message; content is always quoted with quotes doubled
def format_as_csv(payload: dict) -> str:
    rows = [CSV_HEADER]
    for index, msg in enumerate(payload["messages"], start=1):
        # Line breaks inside content would split a row
        content = (msg["content"] or "").replace("\r\n", "\n").replace("\n", "\\n")
        token_count = (msg.get("metadata") or {}).get("tokenCount") or 0
        rows.append(
            f"{index},{_csv_quote(msg['role'])},{_csv_quote(msg['timestamp'])},{_csv_quote(content)},{token_count}"
        )
    return "\n".join(rows) + "\n"


def render(payload: dict, fmt: ExportFormat) -> str:
    if fmt == ExportFormat.TXT:
        return format_as_text(payload)
    if fmt == ExportFormat.CSV:
        return format_as_csv(payload)
    return format_as_json(payload)
