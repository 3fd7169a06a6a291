"""Run logging module for uidfetch"""

from .logger import AuditLogger, get_logger, reset_logger

__all__ = ["AuditLogger", "get_logger", "reset_logger"]
