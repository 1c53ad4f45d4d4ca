from .locations import StockLocation, Product
from .inventory import InventoryRecord, MovementEntry
from .documents import (
    Transfer, TransferItem, Audit, AuditItem, Return, ReturnItem,
    DocumentSequence, ActivityEvent,
)
from .purchasing import Supplier, PurchaseOrder, PurchaseOrderItem
from .sales import Sale, SaleItem, Payment
from .customers import Customer, LoyaltyProgram, LoyaltyTier, LoyaltyTransaction

__all__ = [
    'StockLocation', 'Product',
    'InventoryRecord', 'MovementEntry',
    'Transfer', 'TransferItem', 'Audit', 'AuditItem', 'Return', 'ReturnItem',
    'DocumentSequence', 'ActivityEvent',
    'Supplier', 'PurchaseOrder', 'PurchaseOrderItem',
    'Sale', 'SaleItem', 'Payment',
    'Customer', 'LoyaltyProgram', 'LoyaltyTier', 'LoyaltyTransaction',
]
