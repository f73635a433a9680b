from app.models.product import Product, ProductVariant
from app.models.cart import CartItem
from app.models.coupon import Coupon, DiscountType
from app.models.coupon_redemption import CouponRedemption
from app.models.coupon_usage import CouponUsage
from app.models.order import Order, OrderItem, OrderStatus, PaymentMethod, PaymentStatus, ShippingMethod
from app.models.order_timeline import OrderTimelineEntry
from app.models.order_audit_log import OrderAuditLog
