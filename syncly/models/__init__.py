from syncly.models.cart import Cart, CartItem
from syncly.models.chat_history import ChatHistoryEntry
from syncly.models.customer import Customer
from syncly.models.order import ORDER_STATUSES, Order, OrderItem
from syncly.models.pending_message import PendingMessage
from syncly.models.product import Product
from syncly.models.shop import Shop, ShopFaq, ShopQuickReply, ShopSlogan

__all__ = [
    "Shop",
    "ShopFaq",
    "ShopQuickReply",
    "ShopSlogan",
    "Customer",
    "PendingMessage",
    "ChatHistoryEntry",
    "Product",
    "Cart",
    "CartItem",
    "Order",
    "OrderItem",
    "ORDER_STATUSES",
]
