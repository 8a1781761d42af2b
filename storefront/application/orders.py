from datetime import datetime
from typing import Optional

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, selectinload

from shared.core import get_logger
from storefront.domain.errors import OrderNotFound
from storefront.domain.models import AdminActivityLog, Order
from .auth import AdminContext
from .schemas import OrderFilters

logger = get_logger(__name__)

SORTABLE_COLUMNS = {
    "created_at": Order.created_at,
    "updated_at": Order.updated_at,
    "order_number": Order.order_number,
    "total": Order.total,
    "status": Order.status,
}


class OrderService:
    """Admin-side order reads and the manual mutations admins may make."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, order_id: str) -> Order:
        order = self.db.execute(
            select(Order).options(selectinload(Order.items)).where(Order.id == order_id)
        ).scalar_one_or_none()
        if order is None:
            raise OrderNotFound()
        return order

    def get_by_number(self, order_number: str) -> Optional[Order]:
        return self.db.execute(
            select(Order).where(Order.order_number == order_number)
        ).scalar_one_or_none()

    def list(self, filters: OrderFilters):
        query = select(Order)
        if filters.status:
            query = query.where(Order.status == filters.status)
        if filters.q:
            pattern = f"%{filters.q.lower()}%"
            query = query.where(or_(
                func.lower(Order.order_number).like(pattern),
                func.lower(Order.customer_email).like(pattern),
                func.lower(Order.customer_name).like(pattern),
            ))
        if filters.date_from:
            query = query.where(Order.created_at >= filters.date_from)
        if filters.date_to:
            query = query.where(Order.created_at <= filters.date_to)

        total = self.db.execute(select(func.count()).select_from(query.subquery())).scalar_one()

        column_name, _, direction = (filters.sort or "created_at:desc").partition(":")
        column = SORTABLE_COLUMNS.get(column_name, Order.created_at)
        query = query.order_by(column.asc() if direction.lower() == "asc" else column.desc())

        offset = (filters.page - 1) * filters.page_size
        orders = self.db.execute(query.offset(offset).limit(filters.page_size)).scalars().all()
        return orders, total

    def update_notes(self, order_id: str, admin_notes: Optional[str], admin: AdminContext) -> Order:
        order = self.get(order_id)
        order.admin_notes = admin_notes
        self._log_activity(admin, "UPDATE_ORDER_NOTES", order.id, {"admin_notes": admin_notes})
        self.db.commit()
        self.db.refresh(order)
        return order

    def update_status(self, order_id: str, status: str, admin: AdminContext,
                      tracking_number: Optional[str] = None,
                      tracking_url: Optional[str] = None,
                      admin_notes: Optional[str] = None) -> Order:
        order = self.get(order_id)
        changes = {"status": status}
        if tracking_number:
            changes["tracking_number"] = tracking_number
        if tracking_url:
            changes["tracking_url"] = tracking_url
        if admin_notes:
            changes["admin_notes"] = admin_notes

        for field, value in changes.items():
            setattr(order, field, value)
        order.updated_at = datetime.utcnow()

        self._log_activity(admin, "UPDATE_ORDER_STATUS", order.id, changes)
        self.db.commit()
        self.db.refresh(order)
        logger.info(f"Order {order.order_number} set to {status} by admin",
                    extra={'extra_fields': {'admin_id': admin.user.id, 'changes': changes}})
        return order

    def _log_activity(self, admin: AdminContext, action: str, resource_id: str, changes: dict) -> None:
        self.db.add(AdminActivityLog(
            admin_id=admin.user.id,
            action=action,
            resource_type="order",
            resource_id=resource_id,
            changes=changes,
            ip_address=admin.ip_address,
            user_agent=admin.user_agent,
        ))

