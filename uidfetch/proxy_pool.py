from __future__ import annotations

import random
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence
from urllib.parse import urlsplit

import requests

from uidfetch.checker import ProxyFaultResult, apply_proxy_outcome, rand_jitter_ms, schedule_slot
from uidfetch.config import ConfigurationError
from uidfetch.fetcher import build_session
from uidfetch.models import FetchResult
from uidfetch.parsers import dedupe, parse_list


SUPPORTED_SCHEMES = {"http", "https", "socks4", "socks4a", "socks5", "socks5h"}


def validate_proxy_url(url: str) -> str:
    try:
        parts = urlsplit(url)
        parts.port  # 端口非法时抛出 ValueError
    except ValueError:
        raise ConfigurationError(f"invalid proxy url: {url}") from None
    if parts.scheme.lower() not in SUPPORTED_SCHEMES or not parts.hostname:
        raise ConfigurationError(f"invalid proxy url: {url}")
    return url


def collect_proxy_urls(*sources: Optional[Sequence[str] | str]) -> List[str]:
    # 合并多个来源后按字符串精确去重，保持首次出现顺序
    urls: List[str] = []
    for source in sources:
        if not source:
            continue
        if isinstance(source, str):
            urls.extend(parse_list(source))
        else:
            for item in source:
                urls.extend(parse_list(item))
    return [validate_proxy_url(url) for url in dedupe(urls)]


@dataclass
class ProxyEntry:
    url: str
    session: requests.Session
    disabled: bool = False
    consecutive_fails: int = 0
    next_at: float = 0.0
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)


@dataclass(frozen=True)
class Reservation:
    index: int
    url: str
    session: requests.Session
    wait: float
    scheduled_at: float


class ProxyPool:
    """代理池：每个条目独立加锁，选择与节奏预约在同一临界区内完成"""

    def __init__(
        self,
        entries: List[ProxyEntry],
        delay_ms: int,
        jitter_ms: int,
        max_consecutive_fails: int,
        clock: Callable[[], float] = time.monotonic,
        rng: Callable[[int, int], int] = random.randint,
    ):
        self.entries = entries
        self.delay_ms = max(0, delay_ms)
        self.jitter_ms = max(0, jitter_ms)
        self.max_consecutive_fails = max_consecutive_fails
        self._clock = clock
        self._rng = rng

    @classmethod
    def from_urls(
        cls,
        urls: Sequence[str],
        user_agent: str,
        delay_ms: int,
        jitter_ms: int,
        max_consecutive_fails: int,
        clock: Callable[[], float] = time.monotonic,
        rng: Callable[[int, int], int] = random.randint,
        session_factory: Callable[[Optional[str], str], requests.Session] = build_session,
    ) -> "ProxyPool":
        now = clock()
        entries = [ProxyEntry(url=url, session=session_factory(url, user_agent), next_at=now) for url in urls]
        return cls(entries, delay_ms, jitter_ms, max_consecutive_fails, clock=clock, rng=rng)

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def disabled_count(self) -> int:
        count = 0
        for entry in self.entries:
            with entry.lock:
                if entry.disabled:
                    count += 1
        return count

    def reserve(self, hint: int) -> Optional[Reservation]:
        """从 hint 开始环形查找首个可用代理并预约时间槽；全部禁用时返回 None"""
        total = len(self.entries)
        if total == 0:
            return None
        start = min(max(0, hint), total - 1)
        for step in range(total):
            index = (start + step) % total
            entry = self.entries[index]
            with entry.lock:
                if entry.disabled:
                    continue
                now = self._clock()
                interval = self.delay_ms + rand_jitter_ms(self.jitter_ms, self._rng)
                wait, entry.next_at = schedule_slot(entry.next_at, now, interval)
                return Reservation(
                    index=index,
                    url=entry.url,
                    session=entry.session,
                    wait=wait,
                    scheduled_at=now + wait,
                )
        return None

    def record(self, index: int, result: FetchResult) -> ProxyFaultResult:
        """按抓取结果更新故障计数，返回值的 disabled 仅在本次调用禁用代理时为 True"""
        entry = self.entries[index]
        with entry.lock:
            if entry.disabled:
                return ProxyFaultResult(fail_count=entry.consecutive_fails, disabled=False)
            outcome = apply_proxy_outcome(entry.consecutive_fails, result, self.max_consecutive_fails)
            entry.consecutive_fails = outcome.fail_count
            if outcome.disabled:
                entry.disabled = True
            return outcome

    def close(self) -> None:
        for entry in self.entries:
            entry.session.close()
