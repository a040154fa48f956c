import json
from datetime import date

from pydantic import BaseModel


def _cell(value):
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list)):
        value = json.dumps(value)
    value = str(value)
    # Embedded double quotes are written as-is
    return f'"{value}"' if "," in value else value


def to_csv_text(records):
    """Comma-separated text with a header row taken from the first record's keys."""
    rows = [r.model_dump(mode="json") if isinstance(r, BaseModel) else dict(r) for r in records]
    if not rows:
        return ""
    headers = list(rows[0])
    lines = [",".join(headers)]
    lines.extend(",".join(_cell(row.get(h)) for h in headers) for row in rows)
    return "\n".join(lines)


def export_filename(name, today=None):
    return f"{name}_{(today or date.today()).isoformat()}.csv"
