import requests

from conftest import FakeClock, FakeResponse, FakeSession
from uidfetch.datasets import resolve_dataset
from uidfetch.fetcher import build_session, fetch_one, is_html_body, read_body, shorten_body


BASE = "https://enka.network/"
ZZZ_PRIMARY = "https://enka.network/api/zzz/uid/1300000001"
ZZZ_MIRROR = "https://profile.microgg.cn/api/zzz/uid/1300000001"


def _fetch(session, dataset="gs", uid=100, delay_ms=20_000, proxy_url=None):
    return fetch_one(session, resolve_dataset(dataset), BASE, uid, 15_000, delay_ms, proxy_url=proxy_url)


def test_is_html_body():
    assert is_html_body("  <html><body>blocked</body></html>") is True
    assert is_html_body("\n\t<!DOCTYPE html>") is True
    assert is_html_body('{"ok":true}') is False
    assert is_html_body("") is False


def test_shorten_body_truncates_long_text():
    assert shorten_body("a" * 300) == "a" * 300
    assert shorten_body("a" * 301) == "a" * 300 + "..."


def test_build_session_routes_through_proxy():
    session = build_session("socks5h://127.0.0.1:1080", "test-agent")

    assert session.proxies["http"] == "socks5h://127.0.0.1:1080"
    assert session.proxies["https"] == "socks5h://127.0.0.1:1080"
    assert session.headers["User-Agent"] == "test-agent"
    assert session.max_redirects == 10


def test_build_session_direct_has_no_proxies():
    session = build_session(None, "test-agent")

    assert "http" not in session.proxies


def test_success_returns_body_and_url():
    session = FakeSession({f"{BASE}api/uid/100": FakeResponse(200, '{"uid":100}')})

    result = _fetch(session, proxy_url="http://127.0.0.1:17890")

    assert result.ok is True
    assert result.status == 200
    assert result.body == '{"uid":100}'
    assert result.base == f"{BASE}api/uid/100"
    assert result.proxy == "http://127.0.0.1:17890"
    assert result.error is None
    assert session.calls[0]["headers"] == {"Accept": "application/json"}
    assert session.calls[0]["timeout"] == 15.0


def test_second_mirror_used_when_first_returns_503():
    session = FakeSession(
        {
            ZZZ_PRIMARY: FakeResponse(503, '{"message":"maintenance"}'),
            ZZZ_MIRROR: FakeResponse(200, '{"from":"mirror"}'),
        }
    )

    result = _fetch(session, dataset="zzz", uid=1300000001)

    assert result.ok is True
    assert result.base == ZZZ_MIRROR
    assert result.body == '{"from":"mirror"}'
    assert [call["url"] for call in session.calls] == [ZZZ_PRIMARY, ZZZ_MIRROR]


def test_first_mirror_success_skips_remaining():
    session = FakeSession({ZZZ_PRIMARY: FakeResponse(200, "{}")})

    result = _fetch(session, dataset="zzz", uid=1300000001)

    assert result.ok is True
    assert len(session.calls) == 1


def test_html_on_200_is_failure():
    session = FakeSession({f"{BASE}api/uid/100": FakeResponse(200, "  <html>Just a moment...</html>")})

    result = _fetch(session)

    assert result.ok is False
    assert result.status == 200
    assert result.is_html is True
    assert result.body is None
    assert result.error.startswith("http 200 (html): ")


def test_failure_keeps_last_observed_attempt():
    session = FakeSession(
        {
            ZZZ_PRIMARY: FakeResponse(200, "<html>blocked</html>"),
            ZZZ_MIRROR: requests.ConnectionError("connection refused"),
        }
    )

    result = _fetch(session, dataset="zzz", uid=1300000001)

    assert result.ok is False
    assert result.status is None
    assert result.is_html is False
    assert "connection refused" in result.error
    assert result.base == ZZZ_MIRROR


def test_timeout_is_recorded_as_timeout():
    session = FakeSession(default=requests.ReadTimeout("read timed out"))

    result = _fetch(session)

    assert result.ok is False
    assert result.status is None
    assert result.error == "timeout"
    assert result.retry_after_ms is None


def test_body_read_error_keeps_status():
    session = FakeSession(default=FakeResponse(200, requests.exceptions.ChunkedEncodingError("broken")))

    result = _fetch(session)

    assert result.ok is False
    assert result.status == 200
    assert result.is_html is False
    assert "broken" in result.error


def test_error_excerpt_is_truncated():
    session = FakeSession(default=FakeResponse(404, "x" * 500))

    result = _fetch(session)

    assert result.error == "http 404: " + "x" * 300 + "..."


def test_429_sets_advisory_retry_after():
    session = FakeSession(default=FakeResponse(429, '{"message":"rate limited"}'))

    assert _fetch(session, delay_ms=20_000).retry_after_ms == 300_000
    assert _fetch(session, delay_ms=60_000).retry_after_ms == 600_000


def test_response_is_closed():
    response = FakeResponse(200, "{}")
    session = FakeSession(default=response)

    _fetch(session)

    assert response.closed is True


def test_slow_body_is_cut_off_at_timeout():
    clock = FakeClock()
    slow = FakeResponse(200, '{"uid":"' + "1" * 60 + '"}', chunk_bytes=1, chunk_delay=0.08, clock=clock)
    session = FakeSession(default=slow)

    result = fetch_one(session, resolve_dataset("gs"), BASE, 100, 1_000, 20_000, clock=clock)

    assert result.ok is False
    assert result.status is None
    assert result.error == "timeout"
    assert result.ms <= 1_100
    assert slow.chunks_read < 20
    assert slow.closed is True


def test_slow_first_mirror_falls_through_to_second():
    clock = FakeClock()
    session = FakeSession(
        {
            ZZZ_PRIMARY: FakeResponse(200, "{" + " " * 100 + "}", chunk_bytes=1, chunk_delay=0.5, clock=clock),
            ZZZ_MIRROR: FakeResponse(200, '{"from":"mirror"}'),
        }
    )

    result = fetch_one(session, resolve_dataset("zzz"), BASE, 1300000001, 2_000, 20_000, clock=clock)

    assert result.ok is True
    assert result.base == ZZZ_MIRROR


def test_read_body_within_deadline_returns_all_bytes():
    clock = FakeClock()
    response = FakeResponse(200, "中文 body", chunk_bytes=2, chunk_delay=0.01, clock=clock)

    data = read_body(response, clock() + 5.0, clock=clock)

    assert data.decode("utf-8") == "中文 body"


def test_read_body_respects_max_bytes():
    response = FakeResponse(200, "x" * 100, chunk_bytes=16)

    assert read_body(response, float("inf"), max_bytes=40) == b"x" * 40
    assert response.chunks_read == 3
