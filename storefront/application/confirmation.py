"""Order payment confirmation.

Webhooks and the client-side verify fallback both land here, in any order and
any number of times. Only the first caller for an order moves it to
CONFIRMED/paid; everyone else gets `already_processed=True`.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import case, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from shared.core import get_logger
from storefront.domain.errors import OrderNotFound, UpdateFailed
from storefront.domain.events import PaymentEvent
from storefront.domain.models import Order, OrderItem, OrderStatus, PaymentStatus, Product
from .cart import CartService

logger = get_logger(__name__)


@dataclass(frozen=True)
class ConfirmationResult:
    order_id: str
    order_number: str
    already_processed: bool
    cart_cleared: Optional[bool] = None


class PaymentConfirmationService:
    def __init__(self, db: Session, cart_clearer: Optional[Callable[[Order], object]] = None):
        self.db = db
        self.cart_clearer = cart_clearer or CartService(db).clear_for_order

    def resolve_order(self, event: PaymentEvent) -> Order:
        order = None
        if event.order_id:
            order = self.db.get(Order, str(event.order_id), populate_existing=True)
        if order is None and event.order_number:
            order = self.db.execute(
                select(Order)
                .where(Order.order_number == event.order_number)
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
        if order is None:
            logger.warning(
                "Payment event for unknown order",
                extra={'extra_fields': {'provider': event.provider, 'order_id': event.order_id,
                                        'order_number': event.order_number, 'reference': event.reference}}
            )
            raise OrderNotFound()
        return order

    def confirm_payment(self, event: PaymentEvent) -> ConfirmationResult:
        order = self.resolve_order(event)

        if order.is_payment_settled:
            logger.info(f"Order {order.order_number} already confirmed, skipping",
                        extra={'extra_fields': {'provider': event.provider, 'reference': event.reference}})
            return ConfirmationResult(order.id, order.order_number, already_processed=True)

        try:
            claimed = self._claim(order, event)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to update order {order.id}", exc_info=True)
            raise UpdateFailed(e)

        if not claimed:
            logger.info(f"Order {order.order_number} confirmed concurrently, skipping",
                        extra={'extra_fields': {'provider': event.provider, 'reference': event.reference}})
            return ConfirmationResult(order.id, order.order_number, already_processed=True)

        logger.info(
            f"Order {order.id} ({order.order_number}) confirmed",
            extra={'extra_fields': {'provider': event.provider, 'reference': event.reference,
                                    'amount': event.amount, 'currency': event.currency}}
        )
        return ConfirmationResult(order.id, order.order_number, already_processed=False,
                                  cart_cleared=self._clear_cart(order))

    def _claim(self, order: Order, event: PaymentEvent) -> bool:
        """Compare-and-set the order to CONFIRMED/paid.

        The WHERE clause repeats the settled check so a racing confirmation
        that read the order before us matches zero rows.
        """
        values = {
            "status": OrderStatus.CONFIRMED.value,
            "payment_status": PaymentStatus.PAID.value,
            "payment_metadata": event.audit_metadata(),
            "updated_at": datetime.utcnow(),
        }
        if event.reference:
            values["payment_reference"] = event.reference

        result = self.db.execute(
            update(Order)
            .where(
                Order.id == order.id,
                Order.payment_status != PaymentStatus.PAID.value,
                Order.status != OrderStatus.CONFIRMED.value,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            return False

        self._reduce_stock(order.id)
        self.db.commit()
        self.db.refresh(order)
        return True

    def _reduce_stock(self, order_id: str) -> None:
        items = self.db.execute(
            select(OrderItem.product_id, OrderItem.quantity)
            .where(OrderItem.order_id == order_id, OrderItem.product_id.is_not(None))
        ).all()
        for product_id, quantity in items:
            self.db.execute(
                update(Product)
                .where(Product.id == product_id, Product.track_inventory.is_(True))
                .values(stock_quantity=case(
                    (Product.stock_quantity >= quantity, Product.stock_quantity - quantity),
                    else_=0,
                ))
                .execution_options(synchronize_session=False)
            )

    def _clear_cart(self, order: Order) -> bool:
        # Payment is already recorded; a cart left behind is only housekeeping
        try:
            self.cart_clearer(order)
        except Exception:
            self.db.rollback()
            logger.error(f"Error clearing cart after order {order.id}", exc_info=True)
            return False
        return True
