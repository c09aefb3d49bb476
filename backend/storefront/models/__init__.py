from .identity import User, UserProfile, Address
from .catalog import Supplier, Category, Product, ProductCategory, ProductImage
from .inventory import Warehouse, InventoryRow
from .orders import Order, OrderItem, Payment, DocumentSequence
from .reviews import ProductReview

__all__ = [
    'User', 'UserProfile', 'Address',
    'Supplier', 'Category', 'Product', 'ProductCategory', 'ProductImage',
    'Warehouse', 'InventoryRow',
    'Order', 'OrderItem', 'Payment', 'DocumentSequence',
    'ProductReview',
]
