from .catalog import Category, Product, Variant
from .customers import Customer, LoyaltyReward
from .auth import User, SessionToken
from .sales import Sale, SaleItem, Refund, RefundItem
from .inventory import InventoryAdjustment
from .documents import DocumentSequence

__all__ = [
    'Category', 'Product', 'Variant',
    'Customer', 'LoyaltyReward',
    'User', 'SessionToken',
    'Sale', 'SaleItem', 'Refund', 'RefundItem',
    'InventoryAdjustment',
    'DocumentSequence',
]
