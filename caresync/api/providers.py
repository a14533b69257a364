"""Provider connection lifecycle and on-demand sync."""

import secrets
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from caresync.dependencies import (
    get_current_user_id,
    get_ingestion_service,
    get_nightscout_client,
    get_oauth_client,
    get_share_client,
)
from caresync.ingestion import IngestionService
from caresync.models.sessions import ProviderKind, ShareRegion
from caresync.providers import DexcomOAuthClient, DexcomShareClient, NightscoutClient

router = APIRouter(tags=["providers"])


class ShareConnectRequest(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)
    region: ShareRegion = ShareRegion.US


class NightscoutConnectRequest(BaseModel):
    url: str = Field(..., min_length=1)
    secret: Optional[str] = None


class OAuthExchangeRequest(BaseModel):
    code: str = Field(..., min_length=1)


@router.post("/share/connect")
async def connect_share(
    body: ShareConnectRequest,
    user_id: str = Depends(get_current_user_id),
    client: DexcomShareClient = Depends(get_share_client)
) -> Dict[str, Any]:
    session = await client.connect(user_id, body.username, body.password, body.region)
    return {"status": "success", "data": {"connected": session.connected, "region": session.region.value}}


@router.post("/nightscout/connect")
async def connect_nightscout(
    body: NightscoutConnectRequest,
    user_id: str = Depends(get_current_user_id),
    client: NightscoutClient = Depends(get_nightscout_client)
) -> Dict[str, Any]:
    session = await client.connect(user_id, body.url, body.secret)
    return {"status": "success", "data": {"connected": session.connected, "url": session.endpoint_url}}


@router.get("/oauth/authorize")
async def oauth_authorize(
    user_id: str = Depends(get_current_user_id),
    client: DexcomOAuthClient = Depends(get_oauth_client)
) -> Dict[str, Any]:
    state = secrets.token_urlsafe(16)
    return {"status": "success", "data": {"url": client.authorization_url(state), "state": state}}


@router.post("/oauth/exchange")
async def oauth_exchange(
    body: OAuthExchangeRequest,
    user_id: str = Depends(get_current_user_id),
    client: DexcomOAuthClient = Depends(get_oauth_client)
) -> Dict[str, Any]:
    session = await client.exchange_code(user_id, body.code)
    return {"status": "success", "data": {"connected": session.connected}}


@router.post("/{kind}/sync")
async def sync_provider(
    kind: ProviderKind,
    user_id: str = Depends(get_current_user_id),
    ingestion: IngestionService = Depends(get_ingestion_service)
) -> Dict[str, Any]:
    """On-demand sync. Failures surface with their specific reason."""
    result = await ingestion.sync_user(user_id, kind)
    return {"status": "success", "data": result.model_dump(mode="json")}


@router.delete("/{kind}")
async def disconnect_provider(
    kind: ProviderKind,
    user_id: str = Depends(get_current_user_id),
    ingestion: IngestionService = Depends(get_ingestion_service)
) -> Dict[str, Any]:
    ingestion.clients[kind].disconnect(user_id)
    return {"status": "success", "data": {"connected": False}}


@router.get("/{kind}/status")
async def provider_status(
    kind: ProviderKind,
    user_id: str = Depends(get_current_user_id),
    ingestion: IngestionService = Depends(get_ingestion_service)
) -> Dict[str, Any]:
    """Connection state for one provider. Never exposes stored credentials."""
    session = ingestion.sessions.get_session(user_id, kind)
    if session is None:
        return {"status": "success", "data": {"connected": False, "last_sync": None, "has_tokens": False}}

    data = {
        "connected": session.connected,
        "last_sync": session.last_sync.isoformat() if session.last_sync else None,
        "has_tokens": session.has_tokens,
    }
    if kind is ProviderKind.NIGHTSCOUT:
        data["url"] = session.endpoint_url
    return {"status": "success", "data": data}
