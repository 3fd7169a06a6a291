import json
from dataclasses import asdict, dataclass
from typing import Optional


@dataclass(frozen=True)
class FetchResult:
    # 单个 UID 的抓取结果，创建后不可变，整行输出到 JSONL
    uid: int
    ok: bool
    status: Optional[int] = None
    is_html: bool = False
    body: Optional[str] = None
    error: Optional[str] = None
    ms: int = 0
    proxy: Optional[str] = None
    base: Optional[str] = None
    retry_after_ms: Optional[int] = None
    proxy_disabled: Optional[bool] = None

    def to_json_line(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False, separators=(",", ":"))


@dataclass
class RunSummary:
    total: int = 0
    dispatched: int = 0
    succeeded: int = 0
    failed: int = 0
    proxies_total: int = 0
    proxies_disabled: int = 0
    write_errors: int = 0
    stop_reason: str = "completed"
    duration_ms: int = 0
