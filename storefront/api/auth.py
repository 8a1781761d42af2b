from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from storefront.application.auth import AuthService
from storefront.application.schemas import LoginRequest, LoginResponse
from storefront.infrastructure.db import get_db
from storefront.infrastructure.rate_limit import RateLimiter
from .deps import get_login_limiter, request_ip

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/login", response_model=LoginResponse)
def login(payload: LoginRequest, request: Request, db: Session = Depends(get_db),
          limiter: RateLimiter = Depends(get_login_limiter)):
    result = AuthService(db, limiter).login(
        payload.email, payload.password, request_ip(request), payload.redirect_to
    )
    return LoginResponse(access_token=result.access_token, role=result.role,
                         redirect_to=result.redirect_to)
