#import all models so SQLAlchemy registers them in Base.metadata

from storefront.data.models.product import ProductModel
from storefront.data.models.cart import CartModel
from storefront.data.models.cart_item import CartItemModel
from storefront.data.models.order import OrderModel, OrderItemModel
from storefront.data.models.payment import PaymentModel, ProviderEventModel
from storefront.data.models.coupon import CouponModel, CouponRedemptionModel

__all__ = [
    "ProductModel",
    "CartModel",
    "CartItemModel",
    "OrderModel",
    "OrderItemModel",
    "PaymentModel",
    "ProviderEventModel",
    "CouponModel",
    "CouponRedemptionModel",
]
