import threading
from typing import Callable, Dict, List, Optional, Union

import pytest

from uidfetch.config import Settings
from uidfetch.logging import AuditLogger, reset_logger


class FakeResponse:
    """响应体按块读取；chunk_delay 配合 clock 模拟慢速返回"""

    def __init__(
        self,
        status_code: int,
        text: Union[str, Exception] = "",
        chunk_bytes: Optional[int] = None,
        chunk_delay: float = 0.0,
        clock=None,
    ):
        self.status_code = status_code
        self._text = text
        self.chunk_bytes = chunk_bytes
        self.chunk_delay = chunk_delay
        self.clock = clock
        self.encoding = None
        self.closed = False
        self.chunks_read = 0

    @property
    def text(self) -> str:
        if isinstance(self._text, Exception):
            raise self._text
        return self._text

    def iter_content(self, chunk_size=1, decode_unicode=False):
        if isinstance(self._text, Exception):
            raise self._text
        data = self._text.encode("utf-8")
        step = self.chunk_bytes or chunk_size
        for offset in range(0, len(data), step):
            if self.clock is not None and self.chunk_delay:
                self.clock.sleep(self.chunk_delay)
            self.chunks_read += 1
            yield data[offset:offset + step]

    def close(self) -> None:
        self.closed = True


Route = Union[FakeResponse, Exception, Callable[[str], FakeResponse]]


class FakeSession:
    """按 URL 返回预置响应；未配置的 URL 默认返回 200 JSON"""

    def __init__(self, routes: Optional[Dict[str, Route]] = None, default: Optional[Route] = None, clock=None):
        self.routes = dict(routes or {})
        self.default = default
        self.clock = clock
        self.calls: List[dict] = []
        self.closed = False
        self._lock = threading.Lock()

    def get(self, url, **kwargs):
        with self._lock:
            self.calls.append(
                {
                    "url": url,
                    "at": self.clock() if self.clock else None,
                    "thread": threading.current_thread().name,
                    **kwargs,
                }
            )
        route = self.routes.get(url, self.default)
        if route is None:
            return FakeResponse(200, '{"uid":"%s"}' % url.rstrip("/").rsplit("/", 1)[-1])
        if isinstance(route, Exception):
            raise route
        if callable(route):
            return route(url)
        return route

    def close(self) -> None:
        self.closed = True


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start
        self._lock = threading.Lock()

    def __call__(self) -> float:
        with self._lock:
            return self.now

    def sleep(self, seconds: float) -> None:
        with self._lock:
            self.now += seconds


@pytest.fixture
def settings(tmp_path):
    return Settings(
        delay_ms=0,
        jitter_ms=0,
        no_proxy_delay_ms=0,
        log_file_path=str(tmp_path / "logs" / "uidfetch.log"),
    )


@pytest.fixture
def audit_logger(settings):
    reset_logger()
    yield AuditLogger(settings)
    reset_logger()
