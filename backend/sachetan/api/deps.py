"""FastAPI dependencies: DB session, shared services and admin auth.

SECURITY: admin routes take a static bearer token (ADMIN_API_TOKEN),
compared in constant time. No token configured -> admin API disabled.
"""
import hmac
from typing import Generator, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from sachetan.bootstrap import Services
from sachetan.core.config import settings
from sachetan.core.exceptions import BusinessError

security = HTTPBearer(auto_error=False)


def get_services(request: Request) -> Services:
    """Services built in the lifespan (or injected by tests)."""
    return request.app.state.services


def get_db(services: Services = Depends(get_services)) -> Generator[Session, None, None]:
    """Get database session."""
    db = services.session_factory()
    try:
        yield db
    finally:
        db.close()


def require_admin(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> str:
    expected = settings.ADMIN_API_TOKEN
    if not expected:
        raise BusinessError.unauthorized("admin API disabled: ADMIN_API_TOKEN not set")
    if credentials is None:
        raise BusinessError.unauthorized("missing bearer token")
    if not hmac.compare_digest(credentials.credentials.encode(), expected.encode()):
        raise BusinessError.unauthorized("invalid admin token")
    return "admin"
