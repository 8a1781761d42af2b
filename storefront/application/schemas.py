from pydantic import BaseModel, Field
from datetime import datetime
from typing import Any, Optional


class WebhookAck(BaseModel):
    received: bool = True
    already_processed: Optional[bool] = Field(None, alias="alreadyProcessed")
    class Config:
        populate_by_name = True


class StripeVerifyRequest(BaseModel):
    session_id: Optional[str] = Field(None, alias="sessionId")
    order_number: Optional[str] = Field(None, alias="orderNumber")
    class Config:
        populate_by_name = True


class PaystackVerifyRequest(BaseModel):
    # Required, but checked in the route so a missing value is a 400
    reference: Optional[str] = None
    order_number: Optional[str] = Field(None, alias="orderNumber")
    class Config:
        populate_by_name = True


class VerifyResponse(BaseModel):
    verified: bool
    already_processed: Optional[bool] = Field(None, alias="alreadyProcessed")
    status: Optional[str] = None
    payment_status: Optional[str] = Field(None, alias="paymentStatus")
    message: Optional[str] = None
    class Config:
        populate_by_name = True


class LoginRequest(BaseModel):
    email: str
    password: str
    redirect_to: str = Field("/", alias="redirectTo")
    class Config:
        populate_by_name = True


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    role: str
    redirect_to: str = Field(alias="redirectTo")
    class Config:
        populate_by_name = True


class OrderFilters(BaseModel):
    page: int = Field(1, ge=1)
    page_size: int = Field(20, ge=1, le=100)
    status: Optional[str] = None
    q: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    sort: str = "created_at:desc"


class OrderSummary(BaseModel):
    id: str
    order_number: str
    customer_name: str
    customer_email: str
    total: float
    status: str
    payment_status: str
    created_at: datetime
    class Config:
        from_attributes = True


class Pagination(BaseModel):
    page: int
    per_page: int
    total: int
    total_pages: int


class OrderListResponse(BaseModel):
    data: list[OrderSummary]
    pagination: Pagination


class OrderItemRead(BaseModel):
    id: int
    product_id: Optional[str] = None
    product_name: str
    quantity: int
    unit_price: float
    total_price: float
    class Config:
        from_attributes = True


class OrderRead(BaseModel):
    id: str
    order_number: str
    status: str
    customer_name: str
    customer_email: str
    customer_phone: Optional[str] = None
    total: float
    payment_method: Optional[str] = None
    payment_status: str
    payment_reference: Optional[str] = None
    payment_metadata: Optional[dict[str, Any]] = None
    admin_notes: Optional[str] = None
    tracking_number: Optional[str] = None
    tracking_url: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    items: list[OrderItemRead] = []
    class Config:
        from_attributes = True


class OrderNotesUpdate(BaseModel):
    admin_notes: Optional[str] = None


class OrderStatusUpdate(BaseModel):
    # Required, but checked in the route so a missing value is a 400
    status: Optional[str] = None
    tracking_number: Optional[str] = None
    tracking_url: Optional[str] = None
    admin_notes: Optional[str] = None


class ActionResult(BaseModel):
    success: bool = True
