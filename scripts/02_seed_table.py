#!/usr/bin/env python3
"""
创建演示表并批量插入示例行。

用法：
    python scripts/02_seed_table.py                          # 1 张表，1000 行空行
    python scripts/02_seed_table.py --rows 50000 --populate  # 5 万行确定性示例数据
    python scripts/02_seed_table.py --name "Demo" --number-columns 2
"""

import argparse
import sys
import time
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def main() -> None:
    from config.settings import settings

    parser = argparse.ArgumentParser(description="Seed a demo table")
    parser.add_argument("--name", default="Table 1", help="表名")
    parser.add_argument("--rows", type=int, default=1000, help="插入行数（可超过单次上限，自动分批）")
    parser.add_argument("--populate", action="store_true", help="填充确定性示例数据")
    parser.add_argument("--number-columns", type=int, default=1, help="额外的数字列数量")
    args = parser.parse_args()

    from sqlmodel import Session

    from src.db.engine import get_engine, init_db
    from src.rows.directory import DEFAULT_COLUMNS, create_table
    from src.rows.service import get_row_service

    init_db()
    columns = list(DEFAULT_COLUMNS) + [(f"Amount {i + 1}", "number") for i in range(args.number_columns)]
    with Session(get_engine()) as session:
        table = create_table(session, name=args.name, columns=columns)
        table_id = table.id
    print(f"created table {args.name} ({table_id}) with {len(columns)} columns")

    service = get_row_service()
    remaining = args.rows
    started = time.perf_counter()
    while remaining > 0:
        batch = min(remaining, settings.ingest.max_bulk_rows)
        result = service.add_rows(table_id, batch, populate_synthetic=args.populate)
        remaining -= batch
        print(f"  +{result['added']} rows, total {result['new_total_count']}")
    service.runner.wait_idle()
    service.runner.shutdown()
    print(f"done in {time.perf_counter() - started:.1f}s")


if __name__ == "__main__":
    main()
