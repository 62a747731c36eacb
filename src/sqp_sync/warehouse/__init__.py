"""
Warehouse Layer
===============
BigQuery access: client wrapper, bounded connection pool, SQL builders.
"""

from sqp_sync.warehouse.client import WarehouseClient, create_warehouse_client
from sqp_sync.warehouse.pool import ConnectionPool, create_pool

__all__ = [
    "ConnectionPool",
    "WarehouseClient",
    "create_pool",
    "create_warehouse_client",
]
