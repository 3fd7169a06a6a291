import re
from typing import Iterable, List

from uidfetch.config import ConfigurationError


U64_MAX = 2**64 - 1

_LIST_SPLIT = re.compile(r"[,;\s]+")
_DIGITS = re.compile(r"[0-9]+")


def parse_list(raw: str) -> List[str]:
    # 逗号、分号、空白均视为分隔符
    if not raw:
        return []
    return [part for part in _LIST_SPLIT.split(raw) if part]


def parse_uid(token: str) -> int:
    value = token.strip()
    if not _DIGITS.fullmatch(value):
        raise ConfigurationError(f"invalid uid: {value}")
    uid = int(value)
    if uid > U64_MAX:
        raise ConfigurationError(f"invalid uid: {value}")
    return uid


def parse_uid_lines(lines: Iterable[str]) -> List[int]:
    # 每行一个 UID，空行跳过
    uids: List[int] = []
    for line in lines:
        value = line.strip()
        if not value:
            continue
        uids.append(parse_uid(value))
    return uids


def parse_uid_list(raw: str) -> List[int]:
    return [parse_uid(token) for token in parse_list(raw)]


def parse_proxy_lines(text: str) -> List[str]:
    # 代理文件：支持 # 注释，每行可含多个地址
    urls: List[str] = []
    for line in text.splitlines():
        content = line.split("#", 1)[0]
        urls.extend(parse_list(content))
    return urls


def dedupe(values: Iterable[str]) -> List[str]:
    seen = set()
    result: List[str] = []
    for value in values:
        if value in seen:
            continue
        seen.add(value)
        result.append(value)
    return result
