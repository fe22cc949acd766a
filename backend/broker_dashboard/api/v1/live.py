"""Live price channel over WebSocket"""

import logging
from typing import List, Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status
from fastapi.concurrency import run_in_threadpool
from pydantic import ValidationError as PydanticValidationError

from broker_dashboard.core.database import SessionLocal
from broker_dashboard.core.exceptions import AuthError
from broker_dashboard.schemas.stock import LiveMessage, PricesPayload
from broker_dashboard.services.channel_manager import LiveConnection, channel_manager
from broker_dashboard.services.price_engine import price_engine
from broker_dashboard.services.subscription_service import subscription_service
from broker_dashboard.services.token_service import token_service

logger = logging.getLogger(__name__)

router = APIRouter()


def _handshake_token(websocket: WebSocket) -> Optional[str]:
    header = websocket.headers.get("authorization", "")
    scheme, _, credentials = header.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    return websocket.query_params.get("token")


def _authenticate(token: Optional[str]) -> int:
    db = SessionLocal()
    try:
        return token_service.authenticate_access_token(db, token).id
    finally:
        db.close()


def _load_tickers(user_id: int) -> List[str]:
    db = SessionLocal()
    try:
        return subscription_service.list_tickers(db, user_id)
    finally:
        db.close()


async def _push_state(connection: LiveConnection, tickers: List[str]) -> None:
    """Align channels with `tickers` and send the list plus a full snapshot; caller holds the lock"""
    channel_manager.sync_tickers(connection, tickers)
    await connection.send_unlocked("subscribed_stocks", tickers)
    snapshot = PricesPayload.model_validate(price_engine.snapshot())
    await connection.send_unlocked("prices_snapshot", snapshot.model_dump())


async def _resync(connection: LiveConnection) -> None:
    tickers = await run_in_threadpool(_load_tickers, connection.user_id)
    async with connection.lock:
        if channel_manager.get(connection.id) is None:
            return
        await _push_state(connection, tickers)


@router.websocket("/live")
async def live_prices(websocket: WebSocket):
    """
    Authenticated price stream

    Frames are JSON objects `{"event": ..., "data": ...}`. The server sends
    `subscribed_stocks` and `prices_snapshot` on admission and after every
    `update_subscriptions`, `all_prices_update` to everyone on each tick and
    `price_update` to the channel of each ticker.
    """
    try:
        user_id = await run_in_threadpool(_authenticate, _handshake_token(websocket))
    except AuthError as exc:
        logger.warning(f"Live connection rejected: {exc.code}")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=exc.code)
        return

    await websocket.accept()
    connection = LiveConnection(websocket, user_id)
    tickers = await run_in_threadpool(_load_tickers, user_id)

    try:
        async with connection.lock:
            channel_manager.register(connection)
            await _push_state(connection, tickers)

        while True:
            raw = await websocket.receive_text()
            try:
                message = LiveMessage.model_validate_json(raw)
            except PydanticValidationError:
                await connection.send("error", {"message": "Malformed message"})
                continue

            if message.event == "update_subscriptions":
                await _resync(connection)
            else:
                logger.info(f"Ignoring live event '{message.event}' from connection {connection.id}")
    except WebSocketDisconnect:
        pass
    finally:
        channel_manager.unregister(connection)
