from __future__ import annotations

import random
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field, replace
from typing import Callable, List, Optional, Sequence, TextIO

import requests

from uidfetch.checker import CircuitBreaker, rand_jitter_ms, schedule_slot
from uidfetch.config import Settings
from uidfetch.datasets import Dataset, normalize_base_url, resolve_dataset
from uidfetch.fetcher import build_session, fetch_one
from uidfetch.logging import AuditLogger, get_logger
from uidfetch.models import FetchResult, RunSummary
from uidfetch.proxy_pool import ProxyPool, collect_proxy_urls
from uidfetch.sink import ResultSink


STOP_COMPLETED = "completed"
STOP_BREAKER = "breaker"
STOP_POOL_EXHAUSTED = "pool_exhausted"


class DispatchCursor:
    # 唯一的分发仲裁者：每个位置只会被一个 worker 取到
    def __init__(self) -> None:
        self._next = 0
        self._lock = threading.Lock()

    def claim(self) -> int:
        with self._lock:
            position = self._next
            self._next += 1
            return position


@dataclass
class RunState:
    cursor: DispatchCursor = field(default_factory=DispatchCursor)
    stop: threading.Event = field(default_factory=threading.Event)
    pool_exhausted: threading.Event = field(default_factory=threading.Event)
    breaker: Optional[CircuitBreaker] = None


class DirectRoute:
    """无代理时的单一直连通道，全局共享一个 next_at"""

    def __init__(
        self,
        session: requests.Session,
        delay_ms: int,
        jitter_ms: int,
        clock: Callable[[], float] = time.monotonic,
        rng: Callable[[int, int], int] = random.randint,
    ):
        self.session = session
        self.delay_ms = max(0, delay_ms)
        self.jitter_ms = max(0, jitter_ms)
        self._clock = clock
        self._rng = rng
        self._lock = threading.Lock()
        self.next_at = clock()

    def reserve(self) -> float:
        with self._lock:
            interval = self.delay_ms + rand_jitter_ms(self.jitter_ms, self._rng)
            wait, self.next_at = schedule_slot(self.next_at, self._clock(), interval)
            return wait


class FetchWorker:
    def __init__(
        self,
        worker_id: int,
        uids: Sequence[int],
        state: RunState,
        dataset: Dataset,
        base_url: str,
        settings: Settings,
        sink: ResultSink,
        logger: AuditLogger,
        pool: Optional[ProxyPool] = None,
        direct: Optional[DirectRoute] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.worker_id = worker_id
        self.uids = uids
        self.state = state
        self.dataset = dataset
        self.base_url = base_url
        self.settings = settings
        self.sink = sink
        self.logger = logger
        self.pool = pool
        self.direct = direct
        self._sleep = sleep
        self._hint = worker_id

    def run(self) -> int:
        dispatched = 0
        # 停止标志只在循环开头检查，进行中的请求由自身超时兜底
        while not self.state.stop.is_set():
            position = self.state.cursor.claim()
            if position >= len(self.uids):
                break
            uid = self.uids[position]

            if self.pool is not None:
                result = self._fetch_via_pool(uid)
                if result is None:
                    break
            elif self.direct is not None:
                result = self._fetch_direct(uid)
            else:
                break

            self.sink.publish(result)
            dispatched += 1
        return dispatched

    def _fetch(self, session: requests.Session, uid: int, proxy_url: Optional[str]) -> FetchResult:
        result = fetch_one(
            session,
            self.dataset,
            self.base_url,
            uid,
            self.settings.effective_timeout_ms,
            self.settings.delay_ms,
            proxy_url=proxy_url,
        )
        self.logger.log_http_request(
            uid=uid,
            url=result.base,
            status_code=result.status,
            latency_ms=result.ms,
            proxy=proxy_url,
            error=result.error,
            level="DEBUG" if result.ok else "WARNING",
        )
        return result

    def _fetch_via_pool(self, uid: int) -> Optional[FetchResult]:
        reservation = self.pool.reserve(self._hint)
        if reservation is None:
            # 代理全部禁用：正常结束，不是错误
            if not self.state.pool_exhausted.is_set():
                self.state.pool_exhausted.set()
                self.logger.log_pipeline_event(
                    "EXHAUSTED", "proxy_pool", data_count=len(self.pool), level="WARNING"
                )
            return None
        self._hint = (reservation.index + 1) % len(self.pool)

        if reservation.wait > 0:
            self._sleep(reservation.wait)

        result = self._fetch(reservation.session, uid, reservation.url)
        outcome = self.pool.record(reservation.index, result)
        if outcome.disabled:
            self.logger.log_proxy_event(
                reservation.url, "disabled", fail_count=outcome.fail_count, reason=outcome.reason
            )
            return replace(result, proxy_disabled=True)
        return result

    def _fetch_direct(self, uid: int) -> FetchResult:
        wait = self.direct.reserve()
        if wait > 0:
            self._sleep(wait)

        result = self._fetch(self.direct.session, uid, None)
        breaker = self.state.breaker
        if breaker is not None and breaker.record(result):
            self.logger.log_pipeline_event(
                "BREAKER",
                "direct",
                details={"uid": uid, "status": result.status, "consecutive_fails": breaker.consecutive_fails},
                level="WARNING",
            )
        return result


def run_fetch(
    settings: Settings,
    uids: Sequence[int],
    stream: TextIO,
    proxy_urls: Optional[List[str]] = None,
    logger: Optional[AuditLogger] = None,
    session_factory: Callable[[Optional[str], str], requests.Session] = build_session,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
    rng: Callable[[int, int], int] = random.randint,
) -> RunSummary:
    # 单次批量抓取：配置校验 -> 启动输出线程 -> worker 并发抓取 -> 排空输出
    dataset = resolve_dataset(settings.dataset)
    base_url = normalize_base_url(settings.base_url)
    urls = proxy_urls if proxy_urls is not None else collect_proxy_urls(settings.proxy_urls)
    logger = logger or get_logger(settings)

    state = RunState()
    pool: Optional[ProxyPool] = None
    direct: Optional[DirectRoute] = None
    if urls:
        pool = ProxyPool.from_urls(
            urls,
            settings.user_agent,
            settings.delay_ms,
            settings.jitter_ms,
            settings.effective_proxy_threshold,
            clock=clock,
            rng=rng,
            session_factory=session_factory,
        )
    else:
        direct = DirectRoute(
            session_factory(None, settings.user_agent),
            max(settings.no_proxy_delay_ms, settings.delay_ms),
            settings.jitter_ms,
            clock=clock,
            rng=rng,
        )
        state.breaker = CircuitBreaker(
            settings.effective_breaker_threshold,
            trip_on_429=settings.breaker_on_429,
            stop=state.stop,
        )

    workers = settings.effective_concurrency(len(urls))
    summary = RunSummary(total=len(uids), proxies_total=len(urls), stop_reason=STOP_COMPLETED)

    def _count(result: FetchResult) -> None:
        if result.ok:
            summary.succeeded += 1
        else:
            summary.failed += 1

    started = time.monotonic()
    logger.log_pipeline_event(
        "START",
        "fetch",
        data_count=len(uids),
        details={"dataset": dataset.name, "workers": workers, "proxies": len(urls)},
    )

    sink = ResultSink(stream, on_emit=_count).start()
    try:
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="fetch-worker") as executor:
            futures = [
                executor.submit(
                    FetchWorker(
                        worker_id,
                        uids,
                        state,
                        dataset,
                        base_url,
                        settings,
                        sink,
                        logger,
                        pool=pool,
                        direct=direct,
                        sleep=sleep,
                    ).run
                )
                for worker_id in range(workers)
            ]
            for future in as_completed(futures):
                summary.dispatched += future.result()
    finally:
        # 提前停止时也要把已产生的结果全部写出
        sink.close()
        summary.write_errors = sink.write_errors
        if pool is not None:
            summary.proxies_disabled = pool.disabled_count
            pool.close()
        if direct is not None:
            direct.session.close()

    if state.breaker is not None and state.breaker.tripped:
        summary.stop_reason = STOP_BREAKER
    elif state.pool_exhausted.is_set():
        summary.stop_reason = STOP_POOL_EXHAUSTED
    summary.duration_ms = int((time.monotonic() - started) * 1000)

    logger.log_pipeline_event(
        "FINISH",
        "fetch",
        data_count=summary.dispatched,
        duration_ms=summary.duration_ms,
        details={
            "succeeded": summary.succeeded,
            "failed": summary.failed,
            "proxies_disabled": summary.proxies_disabled,
            "write_errors": summary.write_errors,
            "stop_reason": summary.stop_reason,
        },
    )
    return summary
