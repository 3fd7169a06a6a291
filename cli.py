from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import List, Optional, TextIO

from uidfetch.config import ConfigurationError
from uidfetch.datasets import get_datasets, resolve_dataset
from uidfetch.logging import get_logger
from uidfetch.parsers import dedupe, parse_list, parse_proxy_lines
from uidfetch.pipeline import run_fetch
from uidfetch.prober import (
    DEFAULT_ACCEPT,
    DEFAULT_CONCURRENCY,
    DEFAULT_MAX_BODY_BYTES,
    DEFAULT_TEST_URL,
    DEFAULT_TIMEOUT_MS,
    ProbeOptions,
    probe_proxies,
)
from uidfetch.proxy_pool import collect_proxy_urls
from uidfetch.report import format_summary_table, summary_to_json
from uidfetch.runtime import apply_overrides, load_settings
from uidfetch.uid_source import read_uids


def _parse_bool(value: str) -> bool:
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    raise argparse.ArgumentTypeError(f"expected true/false, got {value!r}")


def _read_proxy_file(path: Optional[str]) -> Optional[List[str]]:
    if not path:
        return None
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigurationError(f"cannot read proxy file: {path} ({exc})") from None
    return parse_proxy_lines(text)


def add_fetch_arguments(parser: argparse.ArgumentParser) -> None:
    # 未指定的参数保持 None，回落到 .env / 环境变量
    parser.add_argument("--dataset", help="Dataset to fetch: gs, sr or zzz")

    source = parser.add_argument_group("uid input")
    source.add_argument("--uids-stdin", action="store_true", help="Read UIDs from stdin (one per line)")
    source.add_argument("--uids", help="UID list in one argument (comma/semicolon/space separated)")
    source.add_argument("--uid-start", type=int, help="First UID of a continuous range")
    source.add_argument("--count", type=int, help="Number of UIDs in range mode")

    http = parser.add_argument_group("http")
    http.add_argument("--base-url", help="Base URL for gs/sr (default: https://enka.network/)")
    http.add_argument("--user-agent", help="User-Agent header")
    http.add_argument("--timeout-ms", type=int, help="Request timeout in ms (clamped to 1000..120000)")

    pacing = parser.add_argument_group("pacing")
    pacing.add_argument("--delay-ms", type=int, help="Per-proxy delay between requests in ms")
    pacing.add_argument("--jitter-ms", type=int, help="Random jitter added to delay, in [0, jitter) ms")
    pacing.add_argument("--no-proxy-delay-ms", type=int, help="Delay between direct requests when no proxy is used")
    pacing.add_argument("--concurrency", type=int, help="Worker count (1..50, capped by proxy count; 1 without proxies)")

    proxy = parser.add_argument_group("proxy")
    proxy.add_argument("--proxy-urls", help="Proxy URLs (comma/semicolon/space separated)")
    proxy.add_argument("--proxy-file", help="File with proxy URLs, '#' starts a comment")
    proxy.add_argument(
        "--proxy-max-consecutive-fails",
        type=int,
        help="Disable a proxy after N consecutive transport/HTML/429 failures",
    )

    breaker = parser.add_argument_group("circuit breaker (no-proxy mode)")
    breaker.add_argument(
        "--breaker-max-consecutive-fails",
        type=int,
        help="Stop after N consecutive failures",
    )
    breaker.add_argument("--breaker-on-429", type=_parse_bool, help="Stop immediately on HTTP 429 (true/false)")

    parser.add_argument("--summary", action="store_true", help="Print run summary table to stderr")
    parser.add_argument("--summary-json", help="Write run summary as JSON to this path")


def add_probe_arguments(parser: argparse.ArgumentParser) -> None:
    source = parser.add_argument_group("proxy input")
    source.add_argument("--proxy-urls", help="Proxy URLs (comma/semicolon/space separated)")
    source.add_argument("--stdin", action="store_true", help="Read proxy URLs from stdin (one per line)")
    source.add_argument("--proxy-file", help="File with proxy URLs, '#' starts a comment")

    parser.add_argument("--test-url", default=DEFAULT_TEST_URL, help="URL that returns JSON through a usable proxy")
    parser.add_argument("--timeout-ms", type=int, default=DEFAULT_TIMEOUT_MS, help="Request timeout in ms")
    parser.add_argument("--concurrency", type=int, default=DEFAULT_CONCURRENCY, help="Max concurrent probes")
    parser.add_argument("--user-agent", help="User-Agent header (default: USER_AGENT setting)")
    parser.add_argument("--accept", default=DEFAULT_ACCEPT, help="Accept header")
    parser.add_argument(
        "--max-body-bytes",
        type=int,
        default=DEFAULT_MAX_BODY_BYTES,
        help="Read at most this many body bytes per probe",
    )


def build_parser() -> argparse.ArgumentParser:
    # 统一命令行入口
    parser = argparse.ArgumentParser(description="Fetch per-UID records through a rate-limited proxy pool")
    parser.add_argument("--env", help="Path to .env file")

    subparsers = parser.add_subparsers(dest="command", required=True)

    fetch_parser = subparsers.add_parser("fetch", help="Fetch records for a batch of UIDs (JSONL on stdout)")
    add_fetch_arguments(fetch_parser)

    probe_parser = subparsers.add_parser("probe", help="Test proxy URLs against a JSON endpoint (JSONL on stdout)")
    add_probe_arguments(probe_parser)

    subparsers.add_parser("datasets", help="List known datasets and their URL templates")

    return parser


def _settings_overrides(args: argparse.Namespace) -> dict:
    return {
        "dataset": args.dataset,
        "base_url": args.base_url,
        "user_agent": args.user_agent,
        "timeout_ms": args.timeout_ms,
        "delay_ms": args.delay_ms,
        "jitter_ms": args.jitter_ms,
        "no_proxy_delay_ms": args.no_proxy_delay_ms,
        "concurrency": args.concurrency,
        "proxy_urls": args.proxy_urls,
        "proxy_max_consecutive_fails": args.proxy_max_consecutive_fails,
        "breaker_max_consecutive_fails": args.breaker_max_consecutive_fails,
        "breaker_on_429": args.breaker_on_429,
    }


def main(argv: list[str] | None = None, stdin: TextIO | None = None, stdout: TextIO | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    stdin = stdin if stdin is not None else sys.stdin
    stdout = stdout if stdout is not None else sys.stdout

    if args.command == "fetch":
        # 所有配置错误在发起网络请求前暴露
        try:
            settings = apply_overrides(load_settings(args.env), _settings_overrides(args))
            resolve_dataset(settings.dataset)
            uids = read_uids(
                stdin_lines=stdin if args.uids_stdin else None,
                uids=args.uids,
                uid_start=args.uid_start,
                count=args.count,
            )
            proxy_urls = collect_proxy_urls(settings.proxy_urls, _read_proxy_file(args.proxy_file))
        except ConfigurationError as exc:
            parser.error(str(exc))

        summary = run_fetch(settings, uids, stdout, proxy_urls=proxy_urls)

        if args.summary:
            print(format_summary_table(summary), file=sys.stderr)
        if args.summary_json:
            output_path = Path(args.summary_json)
            output_path.parent.mkdir(parents=True, exist_ok=True)
            output_path.write_text(summary_to_json(summary), encoding="utf-8")
        if summary.write_errors:
            print(f"[ERROR] {summary.write_errors} result line(s) could not be written", file=sys.stderr)
            return 1
        return 0

    if args.command == "probe":
        try:
            settings = load_settings(args.env)
            if args.max_body_bytes <= 0:
                raise ConfigurationError("max body bytes must be > 0")
            candidates: List[str] = []
            if args.stdin:
                candidates.extend(line.strip() for line in stdin if line.strip())
            candidates.extend(parse_list(args.proxy_urls or ""))
            candidates.extend(_read_proxy_file(args.proxy_file) or [])
        except ConfigurationError as exc:
            parser.error(str(exc))

        options = ProbeOptions(
            test_url=args.test_url,
            timeout_ms=args.timeout_ms,
            concurrency=args.concurrency,
            user_agent=args.user_agent or settings.user_agent,
            accept=args.accept,
            max_body_bytes=args.max_body_bytes,
        )
        # 非法地址不会中断探测，作为失败结果输出
        probe_proxies(dedupe(candidates), stdout, options, get_logger(settings))
        return 0

    if args.command == "datasets":
        for dataset in get_datasets():
            templates = ", ".join(dataset.url_templates)
            print(f"{dataset.name}\t{dataset.description}\t{templates}", file=stdout)
        return 0

    parser.error("Unknown command")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
