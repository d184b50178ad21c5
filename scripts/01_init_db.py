#!/usr/bin/env python3
"""
初始化数据库：执行 Alembic 迁移（或直接 create_all），并确认行表索引存在。

用法：
    python scripts/01_init_db.py                     # alembic upgrade head
    python scripts/01_init_db.py --create-all        # 跳过 alembic，直接按模型建表
    GRID_DATABASE_URL=postgresql+psycopg://... python scripts/01_init_db.py
"""

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _alembic_upgrade() -> None:
    from alembic import command
    from alembic.config import Config

    cfg = Config()
    cfg.set_main_option("script_location", str(ROOT / "alembic"))
    command.upgrade(cfg, "head")


def main() -> None:
    parser = argparse.ArgumentParser(description="Initialize the grid row store schema")
    parser.add_argument("--create-all", action="store_true", help="用 SQLModel.metadata.create_all 代替 alembic")
    args = parser.parse_args()

    from src.db.engine import dialect_name, init_db
    from src.ingest.index_manager import IndexManager
    from src.ingest.rebuild import RebuildCoordinator

    if args.create_all:
        init_db()
        print("schema created (create_all)")
    else:
        _alembic_upgrade()
        print("alembic upgrade head done")

    # 异步重建关闭：脚本退出前等待倒排索引建完
    manager = IndexManager(RebuildCoordinator())
    manager.cfg.async_index_rebuild = False
    manager.ensure_indexes()
    print(f"indexes ensured (dialect={dialect_name()})")


if __name__ == "__main__":
    main()
