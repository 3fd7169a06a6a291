from __future__ import annotations

from typing import Iterable, List, Optional

from uidfetch.config import ConfigurationError
from uidfetch.parsers import U64_MAX, parse_uid_lines, parse_uid_list


def uid_range(start: int, count: int) -> List[int]:
    # 连续区间，超出 u64 上限时饱和
    if count <= 0:
        raise ConfigurationError("count must be > 0")
    if start < 0 or start > U64_MAX:
        raise ConfigurationError(f"invalid uid: {start}")
    return [min(start + offset, U64_MAX) for offset in range(count)]


def read_uids(
    stdin_lines: Optional[Iterable[str]] = None,
    uids: Optional[str] = None,
    uid_start: Optional[int] = None,
    count: Optional[int] = None,
) -> List[int]:
    # 优先级：stdin -> 内联列表 -> 区间；前者为空时顺延
    if stdin_lines is not None:
        result = parse_uid_lines(stdin_lines)
        if result:
            return result

    if uids:
        result = parse_uid_list(uids)
        if result:
            return result

    if uid_start is not None and count is not None:
        return uid_range(uid_start, count)

    raise ConfigurationError(
        "missing uids input (provide --uids-stdin, --uids, or --uid-start + --count)"
    )
