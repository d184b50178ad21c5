"""统一日志：组件级 logger、按启动实例命名的日志文件、启动时清理。"""
from .log_manager import (
    LogManager,
    cleanup_logs,
    get_logger,
    init_logging,
    prune_log_files,
)

__all__ = ["LogManager", "get_logger", "init_logging", "cleanup_logs", "prune_log_files"]
