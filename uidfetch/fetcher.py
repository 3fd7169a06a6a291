import time
from typing import Callable, List, Optional

import requests

from uidfetch.datasets import Dataset
from uidfetch.models import FetchResult


BODY_EXCERPT_CHARS = 300
MAX_REDIRECTS = 10
RETRY_AFTER_FLOOR_MS = 5 * 60_000
READ_CHUNK_BYTES = 8192


def build_session(proxy_url: Optional[str], user_agent: str) -> requests.Session:
    # 每个代理一个独立 Session，http/https 都走该代理
    session = requests.Session()
    session.headers.update({"User-Agent": user_agent})
    session.max_redirects = MAX_REDIRECTS
    if proxy_url:
        session.proxies.update({"http": proxy_url, "https": proxy_url})
    return session


def is_html_body(body: str) -> bool:
    # 拦截页/验证页通常是 HTML，以 "<" 开头
    return body.lstrip().startswith("<")


def shorten_body(body: str, limit: int = BODY_EXCERPT_CHARS) -> str:
    if len(body) > limit:
        return body[:limit] + "..."
    return body


def read_body(
    response: requests.Response,
    deadline: float,
    max_bytes: Optional[int] = None,
    clock: Callable[[], float] = time.monotonic,
) -> bytes:
    """分块读取响应体，超过 deadline 抛出 ReadTimeout

    requests 的 timeout 只限制单次 socket 读，服务端持续慢速返回时需要在块之间检查总时长。
    """
    chunks: List[bytes] = []
    size = 0
    for chunk in response.iter_content(chunk_size=READ_CHUNK_BYTES):
        if chunk:
            chunks.append(chunk)
            size += len(chunk)
        if max_bytes is not None and size >= max_bytes:
            break
        if clock() > deadline:
            raise requests.ReadTimeout("response body not complete before deadline")
    data = b"".join(chunks)
    if max_bytes is not None:
        data = data[:max_bytes]
    return data


def decode_body(response: requests.Response, data: bytes) -> str:
    encoding = response.encoding or "utf-8"
    try:
        return data.decode(encoding, errors="replace")
    except LookupError:
        return data.decode("utf-8", errors="replace")


def retry_after_for(status: Optional[int], delay_ms: int) -> Optional[int]:
    if status != 429:
        return None
    return max(RETRY_AFTER_FLOOR_MS, delay_ms * 10)


def fetch_one(
    session: requests.Session,
    dataset: Dataset,
    base_url: str,
    uid: int,
    timeout_ms: int,
    delay_ms: int,
    proxy_url: Optional[str] = None,
    clock: Callable[[], float] = time.monotonic,
) -> FetchResult:
    # 依次尝试候选地址，首个 200 且非 HTML 的响应即返回；每次尝试的总耗时受 timeout 限制
    started = clock()
    timeout = max(1, timeout_ms) / 1000.0

    last_status: Optional[int] = None
    last_is_html = False
    last_error: Optional[str] = None
    last_base: Optional[str] = None

    for url in dataset.build_urls(base_url, uid):
        last_base = url
        deadline = clock() + timeout
        try:
            response = session.get(
                url,
                headers={"Accept": "application/json"},
                timeout=timeout,
                stream=True,
            )
        except requests.Timeout:
            last_status, last_is_html, last_error = None, False, "timeout"
            continue
        except requests.RequestException as exc:
            last_status, last_is_html, last_error = None, False, str(exc)
            continue

        status = response.status_code
        try:
            text = decode_body(response, read_body(response, deadline, clock=clock))
        except requests.Timeout:
            last_status, last_is_html, last_error = None, False, "timeout"
            continue
        except requests.RequestException as exc:
            last_status, last_is_html, last_error = status, False, str(exc)
            continue
        finally:
            response.close()

        html = is_html_body(text)
        if status == 200 and not html:
            return FetchResult(
                uid=uid,
                ok=True,
                status=status,
                is_html=False,
                body=text,
                ms=int((clock() - started) * 1000),
                proxy=proxy_url,
                base=url,
            )

        excerpt = shorten_body(text)
        if html:
            last_error = f"http {status} (html): {excerpt}"
        else:
            last_error = f"http {status}: {excerpt}"
        last_status = status
        last_is_html = html

    return FetchResult(
        uid=uid,
        ok=False,
        status=last_status,
        is_html=last_is_html,
        error=last_error or "transport_error",
        ms=int((clock() - started) * 1000),
        proxy=proxy_url,
        base=last_base,
        retry_after_ms=retry_after_for(last_status, delay_ms),
    )
