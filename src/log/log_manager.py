"""
日志管理：组件级 logger、按启动实例命名的日志文件、启动时清理旧文件。

配置来自 config/grid_config.json 的 logging 段（经 config.settings 合并 .local 覆盖）：

  level            全局级别
  levels           按 logger 名前缀覆盖级别，如 {"src.ingest": "DEBUG"}
  console_output   是否输出到控制台
  file_output      是否写入 logs/grid/<启动时间>.log
  max_size_mb / max_age_days / min_keep_mb   日志目录清理阈值

后台线程（排序缓存预热、倒排索引重建）的日志带线程名，便于和请求日志区分。
"""
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Iterable, Mapping

DEFAULT_LEVEL = "INFO"
DEFAULT_MAX_SIZE_MB = 100
DEFAULT_MAX_AGE_DAYS = 30
DEFAULT_MIN_KEEP_MB = 20
LOG_DIR_NAME = "grid"

_FORMAT = "%(asctime)s.%(msecs)03d | %(levelname)s | %(threadName)s | %(name)s | %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"
_MB = 1024 * 1024


def _level(name: Any, default: int = logging.INFO) -> int:
    value = logging.getLevelName(str(name or "").upper())
    return value if isinstance(value, int) else default


def prune_log_files(
    log_dir: Path,
    max_size_mb: int = DEFAULT_MAX_SIZE_MB,
    max_age_days: int = DEFAULT_MAX_AGE_DAYS,
    min_keep_mb: int = DEFAULT_MIN_KEEP_MB,
    keep: Iterable[Path] = (),
) -> dict[str, Any]:
    """
    清理 log_dir 下的 *.log。

    目录总量低于 min_keep_mb 时不动；否则先删超过 max_age_days 的文件，
    再从最旧的开始删，直到总量不超过 max_size_mb。`keep` 中的文件永不删除。
    """
    report: dict[str, Any] = {"deleted_by_age": [], "deleted_by_size": [], "remaining_mb": 0.0}
    if not log_dir.exists():
        return report

    protected = {Path(p).resolve() for p in keep}
    files = sorted(
        (f for f in log_dir.iterdir() if f.is_file() and f.suffix == ".log"),
        key=lambda p: p.stat().st_mtime,
    )
    sizes = {f: f.stat().st_size for f in files}
    total = sum(sizes.values())
    if total < min_keep_mb * _MB:
        report["remaining_mb"] = total / _MB
        return report

    cutoff = (datetime.now() - timedelta(days=max_age_days)).timestamp()
    survivors: list[Path] = []
    for f in files:
        if f.resolve() not in protected and f.stat().st_mtime < cutoff:
            f.unlink()
            total -= sizes[f]
            report["deleted_by_age"].append(f.name)
        else:
            survivors.append(f)

    for f in list(survivors):
        if total <= max_size_mb * _MB:
            break
        if f.resolve() in protected:
            continue
        f.unlink()
        total -= sizes[f]
        survivors.remove(f)
        report["deleted_by_size"].append(f.name)

    report["remaining_mb"] = total / _MB
    return report


class LogManager:
    """
    管理本进程创建的所有具名 logger。

    模块在 import 时即调用 get_logger，早于应用启动时的 init_logging；
    因此 reconfigure 会把新配置重新应用到已经发放出去的 logger 上。
    """

    def __init__(self, config: Mapping[str, Any] | None = None):
        self._loggers: dict[str, logging.Logger] = {}
        self._run_log_path: Path | None = None
        self._file_handler: logging.Handler | None = None
        self._formatter = logging.Formatter(_FORMAT, datefmt=_DATEFMT)
        self._apply_config(config or {})

    def _apply_config(self, config: Mapping[str, Any]) -> None:
        base = Path(__file__).resolve().parent.parent.parent
        self.log_dir = Path(config["log_dir"]) if config.get("log_dir") else base / "logs" / LOG_DIR_NAME
        self.level = _level(config.get("level") or DEFAULT_LEVEL)
        self.overrides = {
            prefix: _level(lvl, self.level) for prefix, lvl in (config.get("levels") or {}).items()
        }
        self.console_output = bool(config.get("console_output", True))
        self.file_output = bool(config.get("file_output", True))
        self.max_size_mb = int(config.get("max_size_mb", DEFAULT_MAX_SIZE_MB))
        self.max_age_days = int(config.get("max_age_days", DEFAULT_MAX_AGE_DAYS))
        self.min_keep_mb = int(config.get("min_keep_mb", DEFAULT_MIN_KEEP_MB))

    @property
    def run_log_path(self) -> Path | None:
        return self._run_log_path

    def level_for(self, name: str) -> int:
        """最长前缀匹配的覆盖级别，否则为全局级别"""
        best, best_len = self.level, -1
        for prefix, lvl in self.overrides.items():
            if (name == prefix or name.startswith(prefix + ".")) and len(prefix) > best_len:
                best, best_len = lvl, len(prefix)
        return best

    def _shared_file_handler(self) -> logging.Handler:
        # 同一进程的所有 logger 写同一个文件
        if self._file_handler is None:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            if self._run_log_path is None:
                self._run_log_path = self.log_dir / datetime.now().strftime("%Y-%m-%d_%H-%M-%S.log")
            handler = logging.FileHandler(self._run_log_path, encoding="utf-8")
            handler.setFormatter(self._formatter)
            self._file_handler = handler
        return self._file_handler

    def _attach(self, logger: logging.Logger) -> None:
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
        logger.setLevel(self.level_for(logger.name))
        logger.propagate = False
        if self.console_output:
            console = logging.StreamHandler()
            console.setFormatter(self._formatter)
            logger.addHandler(console)
        if self.file_output:
            logger.addHandler(self._shared_file_handler())

    def get_logger(self, name: str) -> logging.Logger:
        logger = self._loggers.get(name)
        if logger is None:
            logger = logging.getLogger(name)
            self._attach(logger)
            self._loggers[name] = logger
        return logger

    def reconfigure(self, config: Mapping[str, Any]) -> None:
        old_dir = self.log_dir
        self._apply_config(config)
        if self.log_dir != old_dir or not self.file_output:
            self._close_file_handler()
        for logger in self._loggers.values():
            self._attach(logger)

    def _close_file_handler(self) -> None:
        if self._file_handler is not None:
            self._file_handler.close()
        self._file_handler = None
        self._run_log_path = None

    def cleanup(self) -> dict[str, Any]:
        return prune_log_files(
            self.log_dir,
            max_size_mb=self.max_size_mb,
            max_age_days=self.max_age_days,
            min_keep_mb=self.min_keep_mb,
            keep=[self._run_log_path] if self._run_log_path else [],
        )


_manager: LogManager | None = None


def _settings_config() -> dict[str, Any]:
    from config.settings import settings
    return dict(settings.logging)


def init_logging(config: Mapping[str, Any] | None = None) -> LogManager:
    """
    (重新)配置日志并清理旧日志文件；config 为 None 时读取 settings.logging。
    可重复调用，已创建的 logger 会切换到新配置。
    """
    global _manager
    cfg = _settings_config() if config is None else dict(config)
    if _manager is None:
        _manager = LogManager(cfg)
    else:
        _manager.reconfigure(cfg)
    if _manager.file_output:
        report = _manager.cleanup()
        if report["deleted_by_age"] or report["deleted_by_size"]:
            _manager.get_logger(__name__).info("[log] pruned old log files: %s", report)
    return _manager


def get_logger(name: str) -> logging.Logger:
    global _manager
    if _manager is None:
        _manager = LogManager(_settings_config())
    return _manager.get_logger(name)


def cleanup_logs() -> dict[str, Any]:
    if _manager is None:
        init_logging()
    return _manager.cleanup()
