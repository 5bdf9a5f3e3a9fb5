import hmac
from typing import Optional

from fastapi import Depends, Security
from fastapi.security import APIKeyHeader

from event_discovery.api.errors import AuthenticationError
from event_discovery.config import Settings, get_settings

_api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def require_api_key(
    api_key: Optional[str] = Security(_api_key_header),
    settings: Settings = Depends(get_settings),
) -> Optional[str]:
    """Guard for admin routes. Open when no ADMIN_API_KEY is configured."""
    if not settings.admin_api_key:
        return None
    if not api_key or not hmac.compare_digest(api_key, settings.admin_api_key):
        raise AuthenticationError("Invalid or missing API key")
    return api_key
