# Database models
from orderflow.models.user import User, Manager
from orderflow.models.product import Product
from orderflow.models.cart import Cart, CartItem, CartState
from orderflow.models.order import Order, OrderItem, OrderStatus
from orderflow.models.order_event import OrderEvent, ActorType
from orderflow.models.discount import Discount, DiscountUsage, DiscountType
from orderflow.models.receipt import Receipt, ReceiptReviewStatus
from orderflow.models.setting import BotSetting
from orderflow.models.scheduled_task import ScheduledTask, ScheduledTaskStatus

__all__ = [
    "User",
    "Manager",
    "Product",
    "Cart",
    "CartItem",
    "CartState",
    "Order",
    "OrderItem",
    "OrderStatus",
    "OrderEvent",
    "ActorType",
    "Discount",
    "DiscountUsage",
    "DiscountType",
    "Receipt",
    "ReceiptReviewStatus",
    "BotSetting",
    "ScheduledTask",
    "ScheduledTaskStatus",
]
