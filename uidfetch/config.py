import os
from dataclasses import dataclass


DEFAULT_BASE_URL = "https://enka.network/"
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

_TRUE_VALUES = {"1", "true", "yes", "y", "on"}
_FALSE_VALUES = {"0", "false", "no", "n", "off"}


class ConfigurationError(ValueError):
    """启动阶段的配置错误，发生在任何网络请求之前"""


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw.strip())
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from None


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"{name} must be a boolean, got {raw!r}")


@dataclass
class Settings:
    # 抓取参数：数据集、请求节奏与熔断阈值
    dataset: str = "gs"
    base_url: str = DEFAULT_BASE_URL
    user_agent: str = DEFAULT_USER_AGENT
    timeout_ms: int = 15_000
    delay_ms: int = 20_000
    jitter_ms: int = 2_000
    no_proxy_delay_ms: int = 20_000
    concurrency: int = 1
    proxy_urls: str = ""
    proxy_max_consecutive_fails: int = 30
    breaker_max_consecutive_fails: int = 5
    breaker_on_429: bool = True

    # 日志配置
    log_level: str = "INFO"
    log_file_path: str = "./logs/uidfetch.log"
    log_file_enabled: bool = True
    log_mask_sensitive: bool = True

    @property
    def effective_timeout_ms(self) -> int:
        return _clamp(int(self.timeout_ms), 1_000, 120_000)

    @property
    def effective_proxy_threshold(self) -> int:
        return _clamp(int(self.proxy_max_consecutive_fails), 1, 200)

    @property
    def effective_breaker_threshold(self) -> int:
        return _clamp(int(self.breaker_max_consecutive_fails), 1, 200)

    def effective_concurrency(self, proxy_count: int) -> int:
        # 无代理时强制单 worker，保证直连节奏不被并发打破
        if proxy_count <= 0:
            return 1
        requested = _clamp(int(self.concurrency), 1, 50)
        return min(requested, proxy_count)

    @classmethod
    def from_env(cls) -> "Settings":
        # 从环境变量读取配置，缺失则使用默认值
        return cls(
            dataset=os.getenv("DATASET", cls.dataset),
            base_url=os.getenv("BASE_URL", cls.base_url),
            user_agent=os.getenv("USER_AGENT", cls.user_agent),
            timeout_ms=_env_int("TIMEOUT_MS", cls.timeout_ms),
            delay_ms=_env_int("DELAY_MS", cls.delay_ms),
            jitter_ms=_env_int("JITTER_MS", cls.jitter_ms),
            no_proxy_delay_ms=_env_int("NO_PROXY_DELAY_MS", cls.no_proxy_delay_ms),
            concurrency=_env_int("CONCURRENCY", cls.concurrency),
            proxy_urls=os.getenv("PROXY_URLS", cls.proxy_urls),
            proxy_max_consecutive_fails=_env_int(
                "PROXY_MAX_CONSECUTIVE_FAILS", cls.proxy_max_consecutive_fails
            ),
            breaker_max_consecutive_fails=_env_int(
                "BREAKER_MAX_CONSECUTIVE_FAILS", cls.breaker_max_consecutive_fails
            ),
            breaker_on_429=_env_bool("BREAKER_ON_429", cls.breaker_on_429),
            log_level=os.getenv("LOG_LEVEL", cls.log_level).upper(),
            log_file_path=os.getenv("LOG_FILE_PATH", cls.log_file_path),
            log_file_enabled=_env_bool("LOG_FILE_ENABLED", cls.log_file_enabled),
            log_mask_sensitive=_env_bool("LOG_MASK_SENSITIVE", cls.log_mask_sensitive),
        )
