import secrets

from fastapi import Depends, HTTPException, Query, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..core.config import get_settings

settings = get_settings()
http_bearer = HTTPBearer(auto_error=False)


def get_operator_auth(credentials: HTTPAuthorizationCredentials = Depends(http_bearer)):
    if not credentials or not secrets.compare_digest(credentials.credentials, settings.api_token):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid operator token")
    return True


def verify_webhook_token(token: str = Query(default="")):
    # an unset webhook token leaves provider callbacks open, e.g. for local tunnels
    if settings.webhook_token and not secrets.compare_digest(token, settings.webhook_token):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid webhook token")
    return True
