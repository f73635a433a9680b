from app.db.base_class import Base


# IMPORT ALL MODELS HERE (THIS REGISTERS THEM WITH Base.metadata)
from app.models.product import Product, ProductVariant  # noqa: F401
from app.models.cart import CartItem  # noqa: F401
from app.models.coupon import Coupon  # noqa: F401
from app.models.coupon_redemption import CouponRedemption  # noqa: F401
from app.models.coupon_usage import CouponUsage  # noqa: F401
from app.models.order import Order, OrderItem  # noqa: F401
from app.models.order_timeline import OrderTimelineEntry  # noqa: F401
from app.models.order_audit_log import OrderAuditLog  # noqa: F401
