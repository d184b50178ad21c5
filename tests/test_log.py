"""
日志：级别覆盖、重新配置、日志目录清理
"""

import logging
import os
import time

from src.log import LogManager, prune_log_files


def _write(path, size_bytes, age_days=0.0):
    path.write_bytes(b"x" * size_bytes)
    ts = time.time() - age_days * 86400
    os.utime(path, (ts, ts))
    return path


def test_level_override_longest_prefix():
    manager = LogManager(
        {
            "level": "WARNING",
            "levels": {"src.ingest": "INFO", "src.ingest.index_manager": "DEBUG"},
            "console_output": False,
            "file_output": False,
        }
    )
    assert manager.level_for("src.rows.pagination") == logging.WARNING
    assert manager.level_for("src.ingest.bulk_insert") == logging.INFO
    assert manager.level_for("src.ingest.index_manager") == logging.DEBUG
    assert manager.level_for("src.ingestion") == logging.WARNING


def test_reconfigure_applies_to_existing_loggers():
    manager = LogManager({"level": "INFO", "console_output": False, "file_output": False})
    logger = manager.get_logger("grid.test.reconfigure")
    assert logger.level == logging.INFO
    assert logger.propagate is False

    manager.reconfigure({"level": "ERROR", "console_output": True, "file_output": False})
    assert logger.level == logging.ERROR
    assert len(logger.handlers) == 1


def test_file_output_shares_one_run_file(tmp_path):
    manager = LogManager({"log_dir": str(tmp_path), "console_output": False, "file_output": True})
    a = manager.get_logger("grid.test.a")
    b = manager.get_logger("grid.test.b")
    assert a.handlers[0] is b.handlers[0]
    a.warning("hello")
    a.handlers[0].flush()
    assert manager.run_log_path.read_text(encoding="utf-8").strip().endswith("hello")
    manager.reconfigure({"console_output": False, "file_output": False})
    assert a.handlers == []


def test_prune_keeps_small_directories(tmp_path):
    _write(tmp_path / "old.log", 10, age_days=90)
    report = prune_log_files(tmp_path, max_size_mb=1, max_age_days=1, min_keep_mb=1)
    assert report["deleted_by_age"] == []
    assert (tmp_path / "old.log").exists()


def test_prune_by_age_then_size(tmp_path):
    mb = 1024 * 1024
    _write(tmp_path / "ancient.log", mb, age_days=60)
    _write(tmp_path / "older.log", mb, age_days=3)
    _write(tmp_path / "newer.log", mb, age_days=2)
    current = _write(tmp_path / "current.log", mb, age_days=1)
    _write(tmp_path / "notes.txt", mb, age_days=90)

    report = prune_log_files(tmp_path, max_size_mb=1, max_age_days=30, min_keep_mb=0, keep=[current])

    assert report["deleted_by_age"] == ["ancient.log"]
    assert report["deleted_by_size"] == ["older.log", "newer.log"]
    assert current.exists()
    assert (tmp_path / "notes.txt").exists()
    assert report["remaining_mb"] == 1.0
