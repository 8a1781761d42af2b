import math
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from storefront.application.auth import AdminContext
from storefront.application.orders import OrderService
from storefront.application.schemas import (
    ActionResult,
    OrderFilters,
    OrderListResponse,
    OrderNotesUpdate,
    OrderRead,
    OrderStatusUpdate,
    OrderSummary,
    Pagination,
)
from storefront.domain.models import OrderStatus
from storefront.infrastructure.db import get_db
from .deps import require_admin

router = APIRouter(prefix="/api/admin/orders", tags=["admin"])


@router.get("", response_model=OrderListResponse)
def list_orders(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100, alias="pageSize"),
    status: Optional[str] = None,
    q: Optional[str] = None,
    date_from: Optional[datetime] = Query(None, alias="dateFrom"),
    date_to: Optional[datetime] = Query(None, alias="dateTo"),
    sort: str = "created_at:desc",
    admin: AdminContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Paginated orders, newest first unless `sort` says otherwise."""
    filters = OrderFilters(page=page, page_size=page_size, status=status, q=q,
                           date_from=date_from, date_to=date_to, sort=sort)
    orders, total = OrderService(db).list(filters)
    return OrderListResponse(
        data=[OrderSummary.model_validate(o) for o in orders],
        pagination=Pagination(
            page=page,
            per_page=page_size,
            total=total,
            total_pages=math.ceil(total / page_size),
        ),
    )


@router.get("/{order_id}", response_model=OrderRead)
def get_order(order_id: str, admin: AdminContext = Depends(require_admin), db: Session = Depends(get_db)):
    return OrderService(db).get(order_id)


@router.patch("/{order_id}", response_model=ActionResult)
def update_order_notes(order_id: str, payload: OrderNotesUpdate,
                       admin: AdminContext = Depends(require_admin), db: Session = Depends(get_db)):
    OrderService(db).update_notes(order_id, payload.admin_notes, admin)
    return ActionResult()


@router.post("/{order_id}/status", response_model=ActionResult)
def update_order_status(order_id: str, payload: OrderStatusUpdate,
                        admin: AdminContext = Depends(require_admin), db: Session = Depends(get_db)):
    if not payload.status:
        raise HTTPException(status_code=400, detail="status required")
    if payload.status not in {s.value for s in OrderStatus}:
        raise HTTPException(status_code=400, detail=f"Unknown order status {payload.status}")

    OrderService(db).update_status(
        order_id,
        payload.status,
        admin,
        tracking_number=payload.tracking_number,
        tracking_url=payload.tracking_url,
        admin_notes=payload.admin_notes,
    )
    return ActionResult()
