#!/usr/bin/env python3
"""
为一张表的某一列批量填充确定性示例数据（同步更新 search_text）。

默认只打印将要修改的行数（dry run），加 --yes 才会写库。

用法：
    python scripts/03_populate_column.py --table "Table 1" --column "Notes"
    python scripts/03_populate_column.py --table "Table 1" --column "Notes" --seed 7 --yes
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

    parser = argparse.ArgumentParser(description="Populate one column for every row of a table")
    parser.add_argument("--table", default="Table 1", help="表名")
    parser.add_argument("--column", required=True, help="列名")
    parser.add_argument("--seed", type=int, default=606, help="列偏移种子，决定生成的取值序列")
    parser.add_argument("--batch-size", type=int, default=settings.ingest.batch_size, help="每批更新行数")
    parser.add_argument("--yes", action="store_true", help="确认执行（否则只做 dry run）")
    args = parser.parse_args()

    from sqlmodel import Session, select

    from src.db.engine import get_engine
    from src.db.models import GridColumn, GridTable, TableRow
    from src.ingest.synthetic import synthetic_value
    from src.rows.values import build_search_text

    engine = get_engine()
    with Session(engine) as session:
        table = session.exec(
            select(GridTable).where(GridTable.name == args.table).order_by(GridTable.created_at)
        ).first()
        if table is None:
            sys.exit(f"table not found: {args.table}")
        column = session.exec(
            select(GridColumn).where(GridColumn.table_id == table.id, GridColumn.name == args.column)
        ).first()
        if column is None:
            sys.exit(f"column not found: {args.column}")
        table_id, column_id, column_type = table.id, column.id, column.type
        row_count = table.row_count

    print(f"table={args.table} ({table_id}) column={args.column} ({column_type}) rows={row_count}")
    if not args.yes:
        print("dry run; pass --yes to write")
        return

    started = time.perf_counter()
    updated = 0
    last_key = None
    while True:
        with Session(engine) as session:
            stmt = select(TableRow).where(TableRow.table_id == table_id)
            if last_key is not None:
                stmt = stmt.where(
                    (TableRow.created_at > last_key[0])
                    | ((TableRow.created_at == last_key[0]) & (TableRow.id > last_key[1]))
                )
            rows = session.exec(
                stmt.order_by(TableRow.created_at, TableRow.id).limit(args.batch_size)
            ).all()
            if not rows:
                break
            for row in rows:
                updated += 1
                data = dict(row.data or {})
                data[column_id] = synthetic_value(column_type, updated, args.seed)
                row.data = data
                row.search_text = build_search_text(data)
                row.updated_at = time.time()
                session.add(row)
            last_key = (rows[-1].created_at, rows[-1].id)
            session.commit()
        print(f"  updated {updated}/{row_count}")

    print(f"done: {updated} rows in {time.perf_counter() - started:.1f}s")


if __name__ == "__main__":
    main()
