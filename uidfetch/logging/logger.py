"""运行日志记录器 - 写入本地文件，stdout 留给 JSONL 结果"""

import os
import sys
import threading
import traceback
from datetime import datetime
from typing import Any, Dict, Optional
from pathlib import Path

from uidfetch.logging.formatters import SensitiveDataMasker, LogFormatter


class AuditLogger:
    """运行日志记录器 - 文件写入，多线程安全"""

    LOG_LEVELS = {'DEBUG': 0, 'INFO': 1, 'WARNING': 2, 'ERROR': 3}

    def __init__(self, settings: Any):
        self.settings = settings
        self.enabled = bool(settings.log_file_enabled)
        if self.enabled:
            Path(settings.log_file_path).parent.mkdir(parents=True, exist_ok=True)

        self.min_level = self.LOG_LEVELS.get(str(settings.log_level).upper(), 1)
        self.mask = bool(settings.log_mask_sensitive)
        self.masker = SensitiveDataMasker()
        self._lock = threading.Lock()
        self._write_failed = False

    def _should_log(self, level: str) -> bool:
        """判断是否应该记录此级别的日志"""
        return self.enabled and self.LOG_LEVELS.get(level, 1) >= self.min_level

    def _write_to_file(self, log_record: Dict[str, Any]) -> None:
        """写入文件日志，失败只提示一次"""
        line = LogFormatter.format_for_file(log_record)
        with self._lock:
            try:
                with open(self.settings.log_file_path, 'a', encoding='utf-8') as f:
                    f.write(line + '\n')
            except OSError as e:
                if not self._write_failed:
                    self._write_failed = True
                    print(f"[LOGGING] Failed to write file log: {e}", file=sys.stderr)

    def _base_record(self, level: str, operation: str, module: str, action: str) -> Dict[str, Any]:
        return {
            'log_level': level,
            'operation_type': operation,
            'module_name': module,
            'action': action,
            'process_id': os.getpid(),
            'thread_name': threading.current_thread().name,
            'created_at': datetime.now().strftime('%Y-%m-%d %H:%M:%S'),
        }

    def log_http_request(
        self,
        uid: int,
        url: Optional[str],
        status_code: Optional[int],
        latency_ms: int = 0,
        proxy: Optional[str] = None,
        error: Optional[str] = None,
        level: str = "DEBUG",
    ) -> None:
        """记录单个 UID 的请求结果"""
        if not self._should_log(level):
            return

        display_url = url or '-'
        log_record = self._base_record(level, 'HTTP_REQUEST', 'fetcher', f"uid {uid} <- {display_url}")
        log_record.update({
            'request_type': 'HTTP',
            'request_status_code': status_code,
            'request_latency_ms': latency_ms,
            'proxy': self.masker.mask_url(proxy, self.mask),
        })
        if error:
            log_record['error_message'] = str(error)[:500]

        self._write_to_file(log_record)

    def log_proxy_event(
        self,
        proxy: str,
        action: str,
        fail_count: Optional[int] = None,
        reason: Optional[str] = None,
        level: str = "WARNING",
    ) -> None:
        """记录代理状态变化（如被禁用）"""
        if not self._should_log(level):
            return

        text = f"Proxy {action}"
        if reason:
            text += f" ({reason})"
        log_record = self._base_record(level, 'PROXY_EVENT', 'proxy_pool', text)
        log_record.update({
            'proxy': self.masker.mask_url(proxy, self.mask),
            'fail_count': fail_count,
        })

        self._write_to_file(log_record)

    def log_pipeline_event(
        self,
        event_type: str,
        module: str,
        data_count: Optional[int] = None,
        duration_ms: int = 0,
        details: Optional[Dict[str, Any]] = None,
        error: Optional[Exception] = None,
        level: str = "INFO",
    ) -> None:
        """记录流程级事件"""
        if not self._should_log(level):
            return

        action = f"Pipeline {event_type}: {module}"
        if data_count is not None:
            action += f" ({data_count} items)"

        log_record = self._base_record(level, f'PIPELINE_{event_type}', 'pipeline', action)
        log_record.update({
            'duration_ms': duration_ms,
            'details': self.masker.format_details(details, self.mask),
        })

        if error:
            log_record['log_level'] = 'ERROR'
            log_record['error_code'] = type(error).__name__
            log_record['error_message'] = str(error)[:500]
            log_record['error_stack'] = traceback.format_exc()[:2000]

        self._write_to_file(log_record)


# 全局日志实例
_logger_instance: Optional[AuditLogger] = None


def get_logger(settings: Optional[Any] = None) -> AuditLogger:
    """获取全局日志实例"""
    global _logger_instance
    if _logger_instance is None:
        if settings is None:
            from uidfetch.runtime import load_settings
            settings = load_settings()
        _logger_instance = AuditLogger(settings)
    return _logger_instance


def reset_logger() -> None:
    """重置日志实例（主要用于测试）"""
    global _logger_instance
    _logger_instance = None
