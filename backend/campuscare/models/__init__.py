from .inventory import Product, InventoryRecord
from .dispensary import Dispensary, DispensarySlot
from .orders import Order, OrderLine
from .wallet import Wallet, WalletTransaction

__all__ = [
    'Product', 'InventoryRecord',
    'Dispensary', 'DispensarySlot',
    'Order', 'OrderLine',
    'Wallet', 'WalletTransaction',
]
