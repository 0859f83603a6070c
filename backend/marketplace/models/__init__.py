from .auth import User, RefreshSession
from .catalog import Product
from .orders import Order, OrderItem, OrderHistory, ReturnRequest, ReturnItem, ReturnHistory
from .security import AuthEvent

__all__ = [
    'User', 'RefreshSession',
    'Product',
    'Order', 'OrderItem', 'OrderHistory',
    'ReturnRequest', 'ReturnItem', 'ReturnHistory',
    'AuthEvent',
]
