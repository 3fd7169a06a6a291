from __future__ import annotations

from dataclasses import fields, replace
from pathlib import Path
from typing import Any, Mapping, Optional

from dotenv import load_dotenv

from uidfetch.config import Settings


def load_settings(env_path: Optional[str] = None) -> Settings:
    # 统一加载 .env 并构建 Settings，避免入口内重复逻辑
    project_root = Path(__file__).resolve().parent.parent
    env_file = Path(env_path) if env_path else project_root / ".env"
    if env_file.exists():
        load_dotenv(env_file)
    else:
        load_dotenv()
    return Settings.from_env()


def apply_overrides(settings: Settings, overrides: Mapping[str, Any]) -> Settings:
    # 命令行参数优先于环境变量；None 表示未指定
    known = {f.name for f in fields(Settings)}
    changes = {key: value for key, value in overrides.items() if key in known and value is not None}
    if not changes:
        return settings
    return replace(settings, **changes)
