# codledger/models/__init__.py
"""
统一导出 ORM 模型。
"""

from codledger.models.enums import ProductStatus, ReservationStatus, StockStatus, TransactionType
from codledger.models.product import Product
from codledger.models.reservation import OrderReservation, OrderReservationLine
from codledger.models.stock_ledger import InventoryTransaction
from codledger.models.stock_level import StockLevel
from codledger.models.warehouse import FulfillmentCenter, Warehouse

__all__ = [
    "FulfillmentCenter",
    "InventoryTransaction",
    "OrderReservation",
    "OrderReservationLine",
    "Product",
    "ProductStatus",
    "ReservationStatus",
    "StockLevel",
    "StockStatus",
    "TransactionType",
    "Warehouse",
]
