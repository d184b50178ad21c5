"""
统一配置模块
- 配置文件: config/grid_config.json（查询 / 缓存 / 入库等可调参数）
- 本地覆盖: config/grid_config.local.json（本地私密配置，如数据库连接串）
- 环境变量优先覆盖部署相关项（数据库 URL、端口等）
"""

import os
import json
from pathlib import Path
from dataclasses import dataclass, field
from typing import Dict, Any, Optional
from dotenv import load_dotenv

load_dotenv()

# 加载 config/grid_config.json + config/grid_config.local.json（本地覆盖）
_CONFIG_PATH = Path(__file__).parent / "grid_config.json"
_LOCAL_CONFIG_PATH = Path(__file__).parent / "grid_config.local.json"


def _load_json(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


_RAW_CONFIG: Dict[str, Any] = _load_json(_CONFIG_PATH)
if _LOCAL_CONFIG_PATH.exists():
    _RAW_CONFIG = _deep_merge(_RAW_CONFIG, _load_json(_LOCAL_CONFIG_PATH))


@dataclass
class DatabaseSettings:
    """数据库连接与单次语句超时"""
    url: Optional[str] = os.getenv("GRID_DATABASE_URL")
    statement_timeout_ms: int = int(os.getenv("GRID_STATEMENT_TIMEOUT_MS", "30000"))
    echo: bool = os.getenv("GRID_DB_ECHO", "false").lower() == "true"


@dataclass
class QuerySettings:
    """行查询：分页上限、深分页阈值、计数上限"""
    default_page_size: int = 50
    max_page_size: int = 2_000
    deep_offset_threshold: int = 5_000      # offset >= 该值走窗口子查询
    count_cap: int = 10_001                 # 有 filter/search 时计数上限
    deep_sort_work_mem: str = "256MB"       # 仅深分页 + 非索引排序时申请


@dataclass
class SortCacheSettings:
    """排序结果缓存：容量、过期时间、启用阈值"""
    enabled: bool = True
    max_entries: int = 50
    ttl_seconds: float = 60.0
    min_table_rows: int = 5_000             # 行数不超过该值时不缓存，直接排序更便宜
    prewarm_on_sort_change: bool = True


@dataclass
class IngestSettings:
    """批量入库：批量上限、分块大小、索引策略、事务内调优参数"""
    max_bulk_rows: int = 100_000
    max_table_rows: int = 2_000_000
    batch_size: int = 5_000
    large_batch_threshold: int = 10_000     # 达到该值才做索引 drop / rebuild
    rebuild_stale_seconds: float = 300.0    # 后台重建标记超时，防止崩溃后永久阻塞
    drop_confirm_attempts: int = 3
    work_mem: str = "256MB"
    maintenance_work_mem: str = "512MB"
    gin_pending_list_limit: str = "64MB"
    async_index_rebuild: bool = True


@dataclass
class ApiSettings:
    """API 服务配置"""
    host: str = os.getenv("API_HOST", "127.0.0.1")
    port: int = int(os.getenv("API_PORT", "9999"))


@dataclass
class BackgroundSettings:
    """后台线程池（预热排序缓存、异步索引重建）"""
    max_workers: int = 2


@dataclass
class PathSettings:
    base: Path = field(default_factory=lambda: Path(__file__).parent.parent)

    @property
    def data(self) -> Path:
        return self.base / "data"

    @property
    def logs(self) -> Path:
        return self.base / "logs"

    def ensure_dirs(self):
        for p in [self.data, self.logs]:
            p.mkdir(parents=True, exist_ok=True)


def _section(name: str) -> Dict[str, Any]:
    return (_RAW_CONFIG.get(name) or {})


class Settings:
    def __init__(self):
        self.env = os.getenv("GRID_ENV", "dev")
        db = _section("database")
        self.database = DatabaseSettings(
            url=os.getenv("GRID_DATABASE_URL") or db.get("url"),
            statement_timeout_ms=int(db.get("statement_timeout_ms", os.getenv("GRID_STATEMENT_TIMEOUT_MS", "30000"))),
            echo=bool(db.get("echo", os.getenv("GRID_DB_ECHO", "false").lower() == "true")),
        )
        q = _section("query")
        self.query = QuerySettings(
            default_page_size=int(q.get("default_page_size", 50)),
            max_page_size=int(q.get("max_page_size", 2_000)),
            deep_offset_threshold=int(q.get("deep_offset_threshold", 5_000)),
            count_cap=int(q.get("count_cap", 10_001)),
            deep_sort_work_mem=str(q.get("deep_sort_work_mem", "256MB")),
        )
        sc = _section("sort_cache")
        self.sort_cache = SortCacheSettings(
            enabled=bool(sc.get("enabled", True)),
            max_entries=int(sc.get("max_entries", 50)),
            ttl_seconds=float(sc.get("ttl_seconds", 60.0)),
            min_table_rows=int(sc.get("min_table_rows", 5_000)),
            prewarm_on_sort_change=bool(sc.get("prewarm_on_sort_change", True)),
        )
        ig = _section("ingest")
        self.ingest = IngestSettings(
            max_bulk_rows=int(ig.get("max_bulk_rows", 100_000)),
            max_table_rows=int(ig.get("max_table_rows", 2_000_000)),
            batch_size=int(ig.get("batch_size", 5_000)),
            large_batch_threshold=int(ig.get("large_batch_threshold", 10_000)),
            rebuild_stale_seconds=float(ig.get("rebuild_stale_seconds", 300.0)),
            drop_confirm_attempts=max(1, int(ig.get("drop_confirm_attempts", 3))),
            work_mem=str(ig.get("work_mem", "256MB")),
            maintenance_work_mem=str(ig.get("maintenance_work_mem", "512MB")),
            gin_pending_list_limit=str(ig.get("gin_pending_list_limit", "64MB")),
            async_index_rebuild=bool(ig.get("async_index_rebuild", True)),
        )
        a = _section("api")
        self.api = ApiSettings(
            host=str(a.get("host", os.getenv("API_HOST", "127.0.0.1"))),
            port=int(a.get("port", os.getenv("API_PORT", "9999"))),
        )
        bg = _section("background")
        self.background = BackgroundSettings(
            max_workers=max(1, int(bg.get("max_workers", 2))),
        )
        self.logging: Dict[str, Any] = _section("logging")
        self.path = PathSettings()

    @property
    def is_prod(self) -> bool:
        return self.env == "prod"

    def print_info(self):
        print(f"""
========================================
  Grid row store
========================================
  环境: {self.env}
  数据库: {self.database.url or "sqlite (default)"}
  排序缓存: {self.sort_cache.max_entries} 条 / {self.sort_cache.ttl_seconds}s
  批量上限: {self.ingest.max_bulk_rows}
========================================
        """)


# 全局单例
settings = Settings()
