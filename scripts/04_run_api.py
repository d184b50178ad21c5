#!/usr/bin/env python3
"""
启动行存储 API 服务

用法:
  python scripts/04_run_api.py
  python scripts/04_run_api.py --port 8001 --host 0.0.0.0
  python scripts/04_run_api.py --workers 2   # 每个 worker 各自持有排序缓存
"""

import argparse
import sys
from pathlib import Path

# 项目根目录加入 path
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def main() -> None:
    from config.settings import settings
    parser = argparse.ArgumentParser(description="Run the grid row store API")
    parser.add_argument("--host", default=settings.api.host, help="Bind host")
    parser.add_argument("--port", type=int, default=settings.api.port, help="Bind port")
    parser.add_argument("--reload", action="store_true", help="Enable reload (dev)")
    parser.add_argument("--workers", type=int, default=1, help="Number of worker processes (ignored with --reload)")
    args = parser.parse_args()

    import uvicorn

    kwargs = {"host": args.host, "port": args.port, "reload": args.reload}
    if not args.reload and args.workers > 1:
        kwargs["workers"] = args.workers
    uvicorn.run("src.api.server:app", **kwargs)


if __name__ == "__main__":
    main()
