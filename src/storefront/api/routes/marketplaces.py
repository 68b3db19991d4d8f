"""
Admin routes for marketplace channels, imported orders and sync.

Sync endpoints are plain ``def`` handlers: provider calls block, so FastAPI
runs them in its threadpool.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from storefront.api.middleware.auth_context import CurrentUser, require_admin
from storefront.api.schemas import (
    ChannelCreateRequest,
    ChannelResponse,
    ChannelUpdateRequest,
    MarketplaceSummaryResponse,
    OrderEventResponse,
    OrderListResponse,
    OrderResponse,
    SyncRequestBody,
    SyncResultResponse,
    SyncRunResponse,
    TaxStateRequest,
    TaxStateResponse,
    TrendPoint,
)
from storefront.database.connection import get_db
from storefront.database.models import MarketplaceChannel, MarketplacePlatform, OrderStatus
from storefront.services.channel_credentials import mask_channel_credentials
from storefront.services.marketplace_store import ChannelInput, MarketplaceOrderStore, OrderFilters
from storefront.services.marketplace_sync import MarketplaceSyncService, SyncRequest
from storefront.utils.dates import parse_datetime
from storefront.utils.exceptions import NotFoundError, ValidationError
from storefront.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


def _channel_response(channel: MarketplaceChannel) -> ChannelResponse:
    response = ChannelResponse.model_validate(channel)
    response.credentials = mask_channel_credentials(channel.credentials)
    return response


# Channels

@router.get("/channels", response_model=List[ChannelResponse])
def list_channels(
    db: Session = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    return [_channel_response(c) for c in MarketplaceOrderStore(db).list_channels()]


@router.post("/channels", response_model=ChannelResponse, status_code=status.HTTP_201_CREATED)
def create_channel(
    request: ChannelCreateRequest,
    db: Session = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    channel = MarketplaceOrderStore(db).create_channel(
        ChannelInput(
            name=request.name,
            slug=request.slug,
            platform=request.platform.value,
            status=request.status.value,
            sync_enabled=request.sync_enabled,
            sync_frequency_minutes=request.sync_frequency_minutes,
            credentials=request.credentials,
            settings=request.settings,
        )
    )
    logger.info(f"Admin {admin.id} created marketplace channel {channel.slug}")
    return _channel_response(channel)


@router.get("/channels/{channel_id}", response_model=ChannelResponse)
def get_channel(
    channel_id: str,
    db: Session = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    return _channel_response(MarketplaceOrderStore(db).require_channel(channel_id))


@router.patch("/channels/{channel_id}", response_model=ChannelResponse)
def update_channel(
    channel_id: str,
    request: ChannelUpdateRequest,
    db: Session = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    changes = request.model_dump(exclude_unset=True, mode="json")
    channel = MarketplaceOrderStore(db).update_channel(channel_id, changes)
    return _channel_response(channel)


# Orders

@router.get("/orders", response_model=OrderListResponse)
def list_orders(
    channel_id: Optional[str] = Query(None),
    platform: Optional[MarketplacePlatform] = Query(None),
    order_status: Optional[str] = Query(None, alias="status", description="Order status or 'any'"),
    from_date: Optional[str] = Query(None, alias="from"),
    to_date: Optional[str] = Query(None, alias="to"),
    search: Optional[str] = Query(None),
    limit: int = Query(25, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    """Filtered, paginated orders, newest purchase first."""
    if order_status and order_status != "any" and order_status not in {s.value for s in OrderStatus}:
        raise ValidationError(f"Invalid status: {order_status}", field="status", value=order_status)
    filters = OrderFilters(
        channel_id=channel_id,
        platform=platform.value if platform else None,
        status=order_status,
        from_date=parse_datetime(from_date, field="from"),
        to_date=parse_datetime(to_date, field="to"),
        search=search,
        limit=limit,
        offset=offset,
    )
    return MarketplaceOrderStore(db).list_orders(filters)


@router.get("/orders/{order_id}", response_model=OrderResponse)
def get_order(
    order_id: str,
    db: Session = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    order = MarketplaceOrderStore(db).get_order(order_id)
    if order is None:
        raise NotFoundError("Marketplace order not found", resource="order", resource_id=order_id)
    return order


@router.get("/orders/{order_id}/events", response_model=List[OrderEventResponse])
def list_order_events(
    order_id: str,
    db: Session = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    return MarketplaceOrderStore(db).list_order_events(order_id)


# Sync

@router.post("/sync", response_model=SyncResultResponse)
def sync_orders(
    request: Optional[SyncRequestBody] = None,
    db: Session = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    """Sync one channel, one platform, or every sync-enabled channel."""
    body = request or SyncRequestBody()
    logger.info(f"Admin {admin.id} triggered marketplace sync (channel={body.channel_id}, platform={body.platform})")
    return MarketplaceSyncService(db).sync_orders(
        SyncRequest(
            channel_id=body.channel_id,
            platform=body.platform.value if body.platform else None,
            since=parse_datetime(body.since, field="since"),
            until=parse_datetime(body.until, field="until"),
            limit=body.limit,
            source=body.source.value,
        )
    )


@router.get("/sync/history", response_model=List[SyncRunResponse])
def get_sync_history(
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    return MarketplaceOrderStore(db).get_sync_history(limit)


# Tax states

@router.get("/tax-states", response_model=List[TaxStateResponse])
def list_tax_states(
    channel_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    return MarketplaceOrderStore(db).list_tax_states(channel_id)


@router.post("/tax-states", response_model=TaxStateResponse, status_code=status.HTTP_201_CREATED)
def add_tax_state(
    request: TaxStateRequest,
    db: Session = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    return MarketplaceOrderStore(db).add_tax_state(request.channel_id, request.state_code)


@router.delete("/tax-states/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_tax_state(
    entry_id: int,
    db: Session = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    MarketplaceOrderStore(db).remove_tax_state(entry_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Reporting

@router.get("/summary", response_model=MarketplaceSummaryResponse)
def get_summary(
    from_date: Optional[str] = Query(None, alias="from"),
    to_date: Optional[str] = Query(None, alias="to"),
    db: Session = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    return MarketplaceOrderStore(db).get_summary(
        parse_datetime(from_date, field="from"),
        parse_datetime(to_date, field="to"),
    )


@router.get("/trends", response_model=List[TrendPoint])
def get_trends(
    from_date: Optional[str] = Query(None, alias="from"),
    to_date: Optional[str] = Query(None, alias="to"),
    group_by: str = Query("day", pattern="^(day|week|month)$"),
    db: Session = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    return MarketplaceOrderStore(db).get_trends(
        parse_datetime(from_date, field="from"),
        parse_datetime(to_date, field="to"),
        group_by,
    )
