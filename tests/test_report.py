import json

from uidfetch.models import RunSummary
from uidfetch.report import format_summary_table, summary_rows, summary_to_json


def _summary():
    return RunSummary(
        total=10,
        dispatched=4,
        succeeded=3,
        failed=1,
        proxies_total=2,
        proxies_disabled=2,
        stop_reason="pool_exhausted",
        duration_ms=1234,
    )


def test_summary_rows_order():
    keys = [key for key, _ in summary_rows(_summary())]

    assert keys[0] == "total"
    assert keys[-2:] == ["stop_reason", "duration_ms"]


def test_format_summary_table_is_aligned():
    table = format_summary_table(_summary())
    lines = table.splitlines()

    assert lines[0] == "fetch 运行结果"
    assert lines[1] == lines[-1]
    assert lines[1].startswith("+") and lines[1].endswith("+")
    assert len({len(line) for line in lines[1:]}) == 1
    assert any("pool_exhausted" in line for line in lines)


def test_summary_to_json():
    data = json.loads(summary_to_json(_summary()))

    assert data == {
        "total": 10,
        "dispatched": 4,
        "succeeded": 3,
        "failed": 1,
        "proxies_total": 2,
        "proxies_disabled": 2,
        "write_errors": 0,
        "stop_reason": "pool_exhausted",
        "duration_ms": 1234,
    }
