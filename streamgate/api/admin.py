import secrets

from fastapi import APIRouter, Depends, HTTPException, Request, Security
from fastapi.security import APIKeyHeader

router = APIRouter()

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def verify_api_key(request: Request, api_key: str = Security(api_key_header)):
    """Verify API key for admin endpoints; open when no key is configured"""
    expected_key = request.app.state.config.security.admin_api_key
    if not expected_key:
        return None

    if not api_key or not secrets.compare_digest(api_key, expected_key):
        raise HTTPException(status_code=403, detail="Invalid API key")
    return api_key


@router.get("/config", dependencies=[Depends(verify_api_key)])
async def get_config(request: Request):
    """Get current configuration (admin only)"""
    return request.app.state.config.public_dict()
