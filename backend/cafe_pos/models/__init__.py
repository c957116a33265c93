from .catalog import Category, Product, Recipe, CafeTable
from .sales import Sale, SaleItem
from .shifts import Shift, Movement
from .credit import Customer, CreditTransaction
from .auth import User, SessionToken
from .sync import SyncLog

__all__ = [
    'Category', 'Product', 'Recipe', 'CafeTable',
    'Sale', 'SaleItem',
    'Shift', 'Movement',
    'Customer', 'CreditTransaction',
    'User', 'SessionToken',
    'SyncLog',
]
