import random
import threading
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from uidfetch.models import FetchResult


REASON_HTTP_429 = "http_429"
REASON_MAX_FAILS = "max_fails"


@dataclass(frozen=True)
class ProxyFaultResult:
    fail_count: int
    disabled: bool
    reason: Optional[str] = None


def is_proxy_fault(result: FetchResult) -> bool:
    # 传输失败、HTML 拦截页、429 都算代理故障
    return result.status is None or result.is_html or result.status == 429


def apply_proxy_outcome(fail_count: int, result: FetchResult, threshold: int) -> ProxyFaultResult:
    # 连续故障计数：成功清零，429 立即禁用，达到阈值禁用
    if result.ok:
        return ProxyFaultResult(fail_count=0, disabled=False)

    fault = is_proxy_fault(result)
    new_count = fail_count + 1 if fault else fail_count

    if result.status == 429:
        return ProxyFaultResult(fail_count=new_count, disabled=True, reason=REASON_HTTP_429)
    if fault and new_count >= threshold:
        return ProxyFaultResult(fail_count=new_count, disabled=True, reason=REASON_MAX_FAILS)
    return ProxyFaultResult(fail_count=new_count, disabled=False)


def rand_jitter_ms(max_jitter_ms: int, rng: Callable[[int, int], int] = random.randint) -> int:
    # 抖动取值 [0, max_jitter_ms)
    if max_jitter_ms <= 0:
        return 0
    return rng(0, max_jitter_ms - 1)


def schedule_slot(next_at: float, now: float, interval_ms: int) -> Tuple[float, float]:
    """预约下一个请求时间槽，返回 (需要等待的秒数, 新的 next_at)

    下一个槽位从本次实际发出时间起算，排队中的请求之间同样保持间隔。
    """
    wait = max(0.0, next_at - now)
    return wait, now + wait + interval_ms / 1000.0


class CircuitBreaker:
    """直连模式的全局熔断器：连续失败达到阈值或遇到 429 时置位停止标志"""

    def __init__(self, threshold: int, trip_on_429: bool = True, stop: Optional[threading.Event] = None):
        self.threshold = threshold
        self.trip_on_429 = trip_on_429
        self.stop = stop if stop is not None else threading.Event()
        self._consecutive_fails = 0
        self._lock = threading.Lock()

    @property
    def consecutive_fails(self) -> int:
        with self._lock:
            return self._consecutive_fails

    @property
    def tripped(self) -> bool:
        return self.stop.is_set()

    def record(self, result: FetchResult) -> bool:
        """记录一次结果，返回本次是否触发熔断"""
        with self._lock:
            if result.ok:
                self._consecutive_fails = 0
                return False
            self._consecutive_fails += 1
            count = self._consecutive_fails

        if result.status == 429 and self.trip_on_429:
            return self._trip()
        if count >= self.threshold:
            return self._trip()
        return False

    def _trip(self) -> bool:
        already = self.stop.is_set()
        self.stop.set()
        return not already
