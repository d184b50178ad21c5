"""
Bulk row ingestion: mode selection, set-based / batched inserts, index lifecycle.
"""

from src.ingest.bulk_insert import BulkInserter, choose_mode
from src.ingest.index_manager import IndexManager, IndexPlan
from src.ingest.rebuild import RebuildCoordinator

__all__ = ["BulkInserter", "choose_mode", "IndexManager", "IndexPlan", "RebuildCoordinator"]
