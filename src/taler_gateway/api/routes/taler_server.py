"""Server-wide Taler administration endpoints.

These operate on the stored settings, not on the running snapshot. Saved
changes take effect after a restart.
"""

import logging
from typing import Annotated

import httpx
from fastapi import APIRouter, Body, HTTPException, Path, status

from taler_gateway.api.dependencies import MerchantClient, SettingsStore
from taler_gateway.api.schemas import (
    AssetSettingsSchema,
    BankAccountCreate,
    BankAccountResponse,
    ErrorResponse,
    InstanceCredentials,
    MessageResponse,
    RefreshAssetsResponse,
    TalerServerSettingsResponse,
    TalerServerSettingsUpdate,
)
from taler_gateway.taler.config import (
    DEFAULT_INSTANCE_ID,
    TalerServerSettings,
    merge_discovered_assets,
)
from taler_gateway.taler.merchant.base import TalerError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/server/taler", tags=["taler-server"])

RESTART_MESSAGE = "Taler settings saved. Restart the service to apply asset list changes."
TOKEN_SCOPE = "all"


def _blank(value: str | None) -> bool:
    return value is None or not value.strip()


def _resolve_credentials(
    settings: TalerServerSettings, form: InstanceCredentials | None
) -> tuple[str | None, str, str | None]:
    form = form or InstanceCredentials()
    base_url = settings.merchant_base_url if _blank(form.merchant_base_url) else form.merchant_base_url.strip()
    if not _blank(form.instance_id):
        instance_id = form.instance_id.strip()
    elif not _blank(settings.merchant_instance_id):
        instance_id = settings.merchant_instance_id
    else:
        instance_id = DEFAULT_INSTANCE_ID
    password = settings.instance_password if _blank(form.password) else form.password
    return base_url, instance_id, password


def _require_account_access(settings: TalerServerSettings) -> tuple[str, str, str]:
    if _blank(settings.merchant_base_url) or _blank(settings.api_token):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Set merchant base URL, instance ID and API token before managing bank accounts.",
        )
    instance_id = settings.merchant_instance_id or DEFAULT_INSTANCE_ID
    return settings.merchant_base_url, instance_id, settings.api_token


@router.get("", response_model=TalerServerSettingsResponse)
async def get_server_settings(
    store: SettingsStore, client: MerchantClient
) -> TalerServerSettingsResponse:
    """Stored settings, plus the instance's bank accounts when reachable."""
    settings = await store.load()
    extra: dict = {}
    if not _blank(settings.merchant_base_url) and not _blank(settings.api_token):
        try:
            accounts = await client.get_bank_accounts(
                settings.merchant_base_url,
                settings.merchant_instance_id or DEFAULT_INSTANCE_ID,
                settings.api_token,
            )
            extra["bank_accounts"] = [BankAccountResponse.from_account(a) for a in accounts]
        except (TalerError, httpx.HTTPError) as e:
            logger.warning("Could not load Taler bank accounts: %s", e)
            extra["bank_accounts_error"] = str(e)
    return TalerServerSettingsResponse.from_settings(settings, **extra)


@router.put("", response_model=MessageResponse)
async def update_server_settings(
    store: SettingsStore, payload: TalerServerSettingsUpdate
) -> MessageResponse:
    """Save settings. Omitted secrets keep their stored values."""
    settings = await store.load()
    settings.merchant_base_url = payload.merchant_base_url
    settings.merchant_public_base_url = payload.merchant_public_base_url
    settings.merchant_instance_id = payload.merchant_instance_id
    if not _blank(payload.api_token):
        settings.api_token = payload.api_token.strip()
    if not _blank(payload.instance_password):
        settings.instance_password = payload.instance_password
    if payload.assets is not None:
        settings.assets = [a.to_settings() for a in payload.assets]

    await store.save(settings)
    return MessageResponse(message=RESTART_MESSAGE)


@router.post(
    "/refresh-assets",
    response_model=RefreshAssetsResponse,
    responses={409: {"model": ErrorResponse}},
)
async def refresh_assets(store: SettingsStore, client: MerchantClient) -> RefreshAssetsResponse:
    """Merge the backend's advertised currencies into the stored asset list."""
    settings = await store.load()
    if _blank(settings.merchant_base_url):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Set a merchant base URL before fetching assets.",
        )

    discovered = await client.get_currencies(settings.merchant_base_url)
    added, updated = merge_discovered_assets(settings, discovered)
    await store.save(settings)
    logger.info("Taler assets refreshed: %d added, %d updated", added, updated)
    return RefreshAssetsResponse(
        added=added,
        updated=updated,
        assets=[AssetSettingsSchema(**vars(a)) for a in settings.assets],
    )


@router.post(
    "/init-instance",
    response_model=MessageResponse,
    responses={409: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
async def init_instance(
    store: SettingsStore,
    client: MerchantClient,
    form: Annotated[InstanceCredentials | None, Body()] = None,
) -> MessageResponse:
    """Create the merchant instance through self-provisioning and save it."""
    settings = await store.load()
    base_url, instance_id, password = _resolve_credentials(settings, form)
    if _blank(base_url) or _blank(password):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Set merchant base URL and instance password before initializing.",
        )

    config = await client.get_config(base_url)
    if not config.self_provisioning:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Merchant backend self-provisioning is disabled. Enable it in the merchant config.",
        )

    await client.create_instance(base_url, instance_id, password)
    settings.merchant_base_url = base_url
    settings.merchant_instance_id = instance_id
    settings.instance_password = password
    await store.save(settings)
    return MessageResponse(message=f"Instance {instance_id} created and saved.")


@router.post(
    "/generate-token",
    response_model=MessageResponse,
    responses={409: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
async def generate_token(
    store: SettingsStore,
    client: MerchantClient,
    form: Annotated[InstanceCredentials | None, Body()] = None,
) -> MessageResponse:
    """Issue an instance API token and store it as the server API token."""
    settings = await store.load()
    base_url, instance_id, password = _resolve_credentials(settings, form)
    if _blank(base_url) or _blank(password):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Set merchant base URL and instance password before generating a token.",
        )

    # Account management needs more than order permissions
    token = await client.create_token(base_url, instance_id, password, TOKEN_SCOPE)
    settings.merchant_base_url = base_url
    settings.merchant_instance_id = instance_id
    settings.instance_password = password
    settings.api_token = token.access_token
    await store.save(settings)
    return MessageResponse(message=f"API token generated and saved (scope: {TOKEN_SCOPE}).")


@router.get(
    "/bank-accounts",
    response_model=list[BankAccountResponse],
    responses={409: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
async def list_bank_accounts(
    store: SettingsStore, client: MerchantClient
) -> list[BankAccountResponse]:
    """List wire accounts of the configured instance."""
    base_url, instance_id, api_token = _require_account_access(await store.load())
    accounts = await client.get_bank_accounts(base_url, instance_id, api_token)
    return [BankAccountResponse.from_account(a) for a in accounts]


@router.post(
    "/bank-accounts",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
async def add_bank_account(
    store: SettingsStore, client: MerchantClient, payload: BankAccountCreate
) -> MessageResponse:
    """Register a payto wire account on the configured instance."""
    base_url, instance_id, api_token = _require_account_access(await store.load())
    await client.add_bank_account(
        base_url, instance_id, api_token, payload.payto_uri.strip(), payload.credit_facade_url
    )
    return MessageResponse(message="Bank account added to merchant instance.")


@router.delete(
    "/bank-accounts/{h_wire}",
    response_model=MessageResponse,
    responses={409: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
async def delete_bank_account(
    store: SettingsStore,
    client: MerchantClient,
    h_wire: Annotated[str, Path(min_length=1)],
) -> MessageResponse:
    """Remove a wire account from the configured instance."""
    base_url, instance_id, api_token = _require_account_access(await store.load())
    await client.delete_bank_account(base_url, instance_id, api_token, h_wire.strip())
    return MessageResponse(message="Bank account deleted from merchant instance.")
