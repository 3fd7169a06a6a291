import json
from dataclasses import asdict
from typing import Any, Dict, List, Tuple

from uidfetch.models import RunSummary


def summary_rows(summary: RunSummary) -> List[Tuple[str, Any]]:
    return [
        ("total", summary.total),
        ("dispatched", summary.dispatched),
        ("succeeded", summary.succeeded),
        ("failed", summary.failed),
        ("proxies", summary.proxies_total),
        ("proxies_disabled", summary.proxies_disabled),
        ("write_errors", summary.write_errors),
        ("stop_reason", summary.stop_reason),
        ("duration_ms", summary.duration_ms),
    ]


def format_summary_table(summary: RunSummary) -> str:
    rows = summary_rows(summary)
    key_width = max(len(k) for k, _ in rows)
    val_width = max(len(str(v)) for _, v in rows)
    border = f"+{'-' * (key_width + 2)}+{'-' * (val_width + 2)}+"

    lines = ["fetch 运行结果", border]
    for key, value in rows:
        lines.append(f"| {key.ljust(key_width)} | {str(value).ljust(val_width)} |")
    lines.append(border)
    return "\n".join(lines)


def summary_to_json(summary: RunSummary, ensure_ascii: bool = False) -> str:
    data: Dict[str, Any] = asdict(summary)
    return json.dumps(data, ensure_ascii=ensure_ascii)
