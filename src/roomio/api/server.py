"""FastAPI surface of the guest portal."""

import asyncio
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from structlog import get_logger

from roomio.api.schemas import (
    AccessRequest,
    AccessResponse,
    CategoryOut,
    GuestOut,
    MenuResponse,
    OrderRequest,
    OrderResponse,
    ServiceRequestBody,
    StatusResponse,
)
from roomio.api.sessions import PortalRegistry
from roomio.clients import DocumentStore, DocumentStoreError, LocalStateStore, create_document_store
from roomio.config import settings
from roomio.models.menu import category_label
from roomio.services.access import (
    AlreadyLoggedInError,
    GuestAccessService,
    InvalidMobileError,
    MissingAdminError,
    NoActiveBookingError,
)
from roomio.services.guest_portal import (
    GuestPortal,
    PortalEventType,
    PortalView,
    ServiceRequestResult,
    SessionInvalidError,
    UnknownServiceError,
)
from roomio.services.menu_service import (
    EmptyCartError,
    OrderFailedError,
    OrderPermissionError,
    UnavailableItemError,
)
from roomio.services.registry import TaskRegistry
from roomio.services.session_reaper import SessionReaper

logger = get_logger(__name__)

SESSION_NOT_FOUND = "Session not found"


def create_app(
    store: Optional[DocumentStore] = None,
    local_state: Optional[LocalStateStore] = None,
) -> FastAPI:
    """Build the API application.

    Args:
        store: Document store; built from settings at startup when omitted
        local_state: Guest local state; built from settings at startup when omitted

    Returns:
        Configured FastAPI app
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owns_store = store is None
        owns_local_state = local_state is None
        app.state.store = store or create_document_store()
        app.state.local_state = local_state or LocalStateStore()
        app.state.portals = PortalRegistry()
        app.state.access = GuestAccessService(app.state.store)

        background = TaskRegistry("api")
        reaper = SessionReaper(app.state.store)
        background.spawn("reaper", reaper.run)
        background.spawn("portal-sweep", lambda: _sweep_portals(app.state.portals))
        logger.info("Guest portal API started", store_backend=settings.store.backend)
        try:
            yield
        finally:
            await background.shutdown()
            await app.state.portals.close_all()
            if owns_local_state:
                await app.state.local_state.close()
            if owns_store:
                await app.state.store.close()
            logger.info("Guest portal API stopped")

    app = FastAPI(title="Roomio Guest Portal", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.api.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app


async def _sweep_portals(portals: PortalRegistry) -> None:
    while True:
        await asyncio.sleep(settings.portal.reaper_interval_seconds)
        await portals.close_idle()


def session_ended(portal: GuestPortal) -> HTTPException:
    """410 carrying why the store ended the session."""
    return HTTPException(
        status_code=410,
        detail={
            "reason": portal.termination_reason.value,
            "message": portal.termination_message,
        },
    )


async def get_portal(session_id: str, request: Request) -> GuestPortal:
    portals: PortalRegistry = request.app.state.portals
    portal = portals.peek(session_id)
    if portal is None:
        raise HTTPException(status_code=404, detail=SESSION_NOT_FOUND)
    if portal.termination_reason is not None:
        raise session_ended(portal)
    if not portal.is_active:
        raise HTTPException(status_code=404, detail=SESSION_NOT_FOUND)
    portals.touch(session_id)
    return portal


router = APIRouter()


@router.get("/health")
async def health() -> StatusResponse:
    return StatusResponse(status="ok")


# ------------------------
# Access
# ------------------------


@router.post("/access", response_model=AccessResponse)
async def access(payload: AccessRequest, request: Request) -> AccessResponse:
    try:
        context = await request.app.state.access.verify(payload.admin_email, payload.mobile)
    except (InvalidMobileError, MissingAdminError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except NoActiveBookingError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except AlreadyLoggedInError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except DocumentStoreError as e:
        logger.error("Guest verification failed", error=str(e))
        raise HTTPException(status_code=503, detail="Failed to verify guest")

    portal = GuestPortal(request.app.state.store, request.app.state.local_state, context)
    if not await portal.start():
        reason = portal.guard.termination_reason
        await portal.close()
        raise HTTPException(
            status_code=409,
            detail=f"Session could not be started ({reason.value if reason else 'unknown'})",
        )

    session_id = request.app.state.portals.add(portal)
    return AccessResponse(
        session_id=session_id,
        guest=GuestOut(
            guest_name=context.guest_name,
            room_number=context.room_number,
            mobile=context.mobile,
            admin=context.masked_admin,
            admin_id=context.admin_id,
        ),
    )


# ------------------------
# Dashboard
# ------------------------


@router.get("/sessions/{session_id}/dashboard", response_model=PortalView)
async def dashboard(portal: GuestPortal = Depends(get_portal)) -> PortalView:
    return await portal.view()


@router.post("/sessions/{session_id}/services/{service}", response_model=ServiceRequestResult)
async def request_service(
    service: str,
    payload: Optional[ServiceRequestBody] = None,
    portal: GuestPortal = Depends(get_portal),
) -> ServiceRequestResult:
    confirm = payload.confirm_charge if payload else False
    try:
        return await portal.request_service(service, confirm_charge=confirm)
    except UnknownServiceError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.delete("/sessions/{session_id}/requests", response_model=StatusResponse)
async def clear_requests(portal: GuestPortal = Depends(get_portal)) -> StatusResponse:
    await portal.clear_request_history()
    return StatusResponse(status="cleared")


@router.delete("/sessions/{session_id}/food-orders", response_model=StatusResponse)
async def clear_food_orders(portal: GuestPortal = Depends(get_portal)) -> StatusResponse:
    await portal.clear_food_order_history()
    return StatusResponse(status="cleared")


@router.post("/sessions/{session_id}/requests/{request_id}/arrival", response_model=StatusResponse)
async def confirm_arrival(request_id: str, portal: GuestPortal = Depends(get_portal)) -> StatusResponse:
    if not await portal.confirm_arrival(request_id):
        raise HTTPException(status_code=404, detail="Request not tracked")
    return StatusResponse(status="completed")


@router.post("/sessions/{session_id}/food-orders/{order_id}/ack", response_model=StatusResponse)
async def acknowledge_completion(order_id: str, portal: GuestPortal = Depends(get_portal)) -> StatusResponse:
    if not await portal.acknowledge_completion(order_id):
        raise HTTPException(status_code=404, detail="Order not tracked")
    return StatusResponse(status="acknowledged")


# ------------------------
# Menu & orders
# ------------------------


@router.get("/sessions/{session_id}/menu", response_model=MenuResponse)
async def menu(category: str = "all", portal: GuestPortal = Depends(get_portal)) -> MenuResponse:
    if not portal.menu.loaded:
        try:
            await portal.menu.fetch()
        except DocumentStoreError as e:
            logger.error("Failed to load menu", error=str(e))
            raise HTTPException(status_code=503, detail="Failed to load menu")
    return MenuResponse(
        categories=[
            CategoryOut(key=key, label=category_label(key))
            for key in portal.menu.categories()
        ],
        items=portal.menu.filter(category),
        error=portal.menu.error,
    )


@router.post("/sessions/{session_id}/orders", response_model=OrderResponse)
async def place_order(payload: OrderRequest, portal: GuestPortal = Depends(get_portal)) -> OrderResponse:
    cart = portal.new_cart(payload.items)
    try:
        order_id = await portal.place_food_order(cart)
    except (EmptyCartError, UnavailableItemError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except OrderPermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except OrderFailedError as e:
        raise HTTPException(status_code=502, detail=str(e))
    except SessionInvalidError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except DocumentStoreError as e:
        logger.error("Failed to load menu for order", error=str(e))
        raise HTTPException(status_code=503, detail="Failed to load menu")
    return OrderResponse(order_id=order_id, message="✅ Order placed successfully!")


# ------------------------
# Session
# ------------------------


@router.post("/sessions/{session_id}/heartbeat", response_model=StatusResponse)
async def heartbeat(portal: GuestPortal = Depends(get_portal)) -> StatusResponse:
    ok = await portal.heartbeat()
    return StatusResponse(status="ok" if ok else "failed")


@router.post("/sessions/{session_id}/logout", response_model=StatusResponse)
async def logout(
    session_id: str,
    request: Request,
    portal: GuestPortal = Depends(get_portal),
) -> StatusResponse:
    await portal.logout()
    await request.app.state.portals.remove(session_id)
    return StatusResponse(status="logged_out")


@router.websocket("/sessions/{session_id}/events")
async def events(websocket: WebSocket, session_id: str) -> None:
    portals: PortalRegistry = websocket.app.state.portals
    portal = portals.peek(session_id)
    if portal is not None and portal.termination_reason is not None:
        await websocket.close(code=4410, reason=portal.termination_message)
        return
    if portal is None or not portal.is_active:
        await websocket.close(code=4404, reason=SESSION_NOT_FOUND)
        return

    await websocket.accept()
    try:
        while True:
            try:
                event = await asyncio.wait_for(
                    portal.events.get(), timeout=settings.portal.heartbeat_seconds
                )
            except asyncio.TimeoutError:
                if portal.closed or portals.peek(session_id) is None:
                    break
                continue
            portals.touch(session_id)
            await websocket.send_json(event.model_dump(mode="json"))
            if event.type == PortalEventType.TERMINATED:
                break
        await websocket.close()
    except WebSocketDisconnect:
        logger.debug("Event stream disconnected", session_id=session_id[:6])


app = create_app()
