"""
代理探测

用已知可返回 JSON 的地址逐个测试代理，输出 {proxyUrl, ok, status, ms, error} JSONL
"""

import json
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, TextIO

import requests

from uidfetch.config import DEFAULT_USER_AGENT, ConfigurationError
from uidfetch.fetcher import build_session, decode_body, is_html_body, read_body
from uidfetch.logging import AuditLogger
from uidfetch.proxy_pool import validate_proxy_url


DEFAULT_TEST_URL = "https://enka.network/api/uid/100000001"
DEFAULT_TIMEOUT_MS = 8_000
DEFAULT_CONCURRENCY = 20
DEFAULT_ACCEPT = "application/json"
DEFAULT_MAX_BODY_BYTES = 65_536

# 目标站对不存在/受限 UID 也会返回 JSON，这些状态码说明代理本身可用
USABLE_STATUSES = {200, 400, 403, 404, 424}


@dataclass(frozen=True)
class ProbeResult:
    proxy_url: str
    ok: bool
    status: Optional[int] = None
    ms: int = 0
    error: Optional[str] = None

    def to_json_line(self) -> str:
        data: Dict[str, Any] = {"proxyUrl": self.proxy_url, "ok": self.ok}
        if self.status is not None:
            data["status"] = self.status
        data["ms"] = self.ms
        if self.error is not None:
            data["error"] = self.error
        return json.dumps(data, ensure_ascii=False, separators=(",", ":"))


@dataclass(frozen=True)
class ProbeOptions:
    test_url: str = DEFAULT_TEST_URL
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    concurrency: int = DEFAULT_CONCURRENCY
    user_agent: str = DEFAULT_USER_AGENT
    accept: str = DEFAULT_ACCEPT
    max_body_bytes: int = DEFAULT_MAX_BODY_BYTES


def is_usable_body(status: int, body: str) -> bool:
    text = body.strip()
    if is_html_body(text):
        return False
    return text.startswith(("{", "[")) and status in USABLE_STATUSES


def probe_one(
    proxy_url: str,
    options: ProbeOptions,
    session_factory: Callable[[Optional[str], str], requests.Session] = build_session,
    clock: Callable[[], float] = time.monotonic,
) -> ProbeResult:
    started = clock()

    def _elapsed() -> int:
        return int((clock() - started) * 1000)

    try:
        validate_proxy_url(proxy_url)
    except ConfigurationError as exc:
        return ProbeResult(proxy_url, ok=False, ms=_elapsed(), error=str(exc))

    timeout = max(1, options.timeout_ms) / 1000.0
    deadline = started + timeout
    session = session_factory(proxy_url, options.user_agent)
    try:
        try:
            response = session.get(
                options.test_url,
                headers={"Accept": options.accept},
                timeout=timeout,
                stream=True,
            )
        except requests.Timeout:
            return ProbeResult(proxy_url, ok=False, ms=_elapsed(), error="timeout")
        except requests.RequestException as exc:
            return ProbeResult(proxy_url, ok=False, ms=_elapsed(), error=str(exc))

        status = response.status_code
        try:
            data = read_body(response, deadline, max_bytes=options.max_body_bytes, clock=clock)
        except requests.Timeout:
            return ProbeResult(proxy_url, ok=False, status=status, ms=_elapsed(), error="timeout")
        except requests.RequestException as exc:
            return ProbeResult(proxy_url, ok=False, status=status, ms=_elapsed(), error=str(exc))
        finally:
            response.close()
    finally:
        session.close()

    body = decode_body(response, data)
    return ProbeResult(proxy_url, ok=is_usable_body(status, body), status=status, ms=_elapsed())


def probe_proxies(
    proxy_urls: Sequence[str],
    stream: TextIO,
    options: ProbeOptions,
    logger: AuditLogger,
    session_factory: Callable[[Optional[str], str], requests.Session] = build_session,
    clock: Callable[[], float] = time.monotonic,
) -> List[ProbeResult]:
    # 并发探测，按输入顺序输出
    if not proxy_urls:
        return []

    started = time.monotonic()
    workers = max(1, min(options.concurrency, len(proxy_urls)))
    logger.log_pipeline_event(
        "START",
        "probe",
        data_count=len(proxy_urls),
        details={"test_url": options.test_url, "workers": workers},
    )

    results: List[ProbeResult] = []
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="probe-worker") as executor:
        futures = [
            executor.submit(probe_one, proxy_url, options, session_factory, clock)
            for proxy_url in proxy_urls
        ]
        for future in futures:
            result = future.result()
            results.append(result)
            stream.write(result.to_json_line() + "\n")
            stream.flush()
            logger.log_proxy_event(
                result.proxy_url,
                "usable" if result.ok else "unusable",
                reason=result.error or (str(result.status) if result.status is not None else None),
                level="DEBUG" if result.ok else "INFO",
            )

    usable = sum(1 for result in results if result.ok)
    logger.log_pipeline_event(
        "FINISH",
        "probe",
        data_count=len(results),
        duration_ms=int((time.monotonic() - started) * 1000),
        details={"usable": usable, "unusable": len(results) - usable},
    )
    return results
