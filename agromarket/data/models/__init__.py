#import wszystkich modeli zeby SQLAlchemy je zarejestrowal w base metadata

from agromarket.data.models.user import UserModel
from agromarket.data.models.product import ProductModel
from agromarket.data.models.cart import CartModel
from agromarket.data.models.cart_item import CartItemModel
from agromarket.data.models.order import OrderModel
from agromarket.data.models.order_line import OrderLineModel
from agromarket.data.models.payment import PaymentModel
from agromarket.data.models.idempotency_key import IdempotencyKeyModel

__all__ = [
    "UserModel",
    "ProductModel",
    "CartModel",
    "CartItemModel",
    "OrderModel",
    "OrderLineModel",
    "PaymentModel",
    "IdempotencyKeyModel",
]
