from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from shared.core import get_logger
from storefront.domain.models import Cart, CartItem, Order

logger = get_logger(__name__)


class CartService:
    def __init__(self, db: Session):
        self.db = db

    def _carts_for(self, order: Order):
        if order.user_id:
            return select(Cart.id).where(Cart.user_id == order.user_id)
        if order.session_id:
            return select(Cart.id).where(Cart.session_id == order.session_id)
        return None

    def clear_for_order(self, order: Order) -> int:
        """Empty the cart the order was checked out from.

        Returns the number of cart items removed; an already-empty or missing
        cart removes nothing.
        """
        cart_ids = self._carts_for(order)
        if cart_ids is None:
            logger.info(f"Order {order.order_number} has no cart owner, nothing to clear")
            return 0

        result = self.db.execute(
            delete(CartItem)
            .where(CartItem.cart_id.in_(cart_ids))
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        removed = result.rowcount or 0
        logger.info(
            f"Cleared cart for order {order.order_number}",
            extra={'extra_fields': {'order_id': order.id, 'items_removed': removed}}
        )
        return removed
