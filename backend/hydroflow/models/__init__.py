from .people import Route, DriverProfile, CustomerProfile, CustomerSpecialPrice
from .inventory import Product, StockMovement, CustomerBottleWallet
from .orders import Order, OrderItem
from .finance import LedgerEntry, DriverLedgerEntry, Expense, CashHandover
from .audit import AuditEvent

__all__ = [
    'Route', 'DriverProfile', 'CustomerProfile', 'CustomerSpecialPrice',
    'Product', 'StockMovement', 'CustomerBottleWallet',
    'Order', 'OrderItem',
    'LedgerEntry', 'DriverLedgerEntry', 'Expense', 'CashHandover',
    'AuditEvent',
]
