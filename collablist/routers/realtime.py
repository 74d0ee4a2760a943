# collablist/routers/realtime.py
# PURPOSE: the /ws endpoint. The bearer token travels as ?token=...; a bad or
# missing token closes the socket with 1008 before accept, so no room is joined.

import json
import logging

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status
from sqlalchemy.orm import sessionmaker

from ..auth import authenticate_token
from ..config import settings
from ..db import get_session_factory
from ..errors import Unauthorized
from ..events import ERROR
from ..realtime import Connection, RealtimeSession

router = APIRouter(tags=["realtime"])
logger = logging.getLogger(__name__)


@router.websocket("/ws")
async def realtime_socket(
    websocket: WebSocket,
    token: str | None = Query(None),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    with session_factory() as db:
        try:
            user = authenticate_token(db, token)
        except Unauthorized as err:
            logger.info("realtime handshake rejected reason=%s", err.message)
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return
        user_id = user.id

    channels = websocket.app.state.channels
    conn = Connection(websocket, user_id)
    session = RealtimeSession(
        conn,
        channels,
        session_factory,
        push=websocket.app.state.push,
        verify_join=settings.REALTIME_VERIFY_JOIN,
    )
    await websocket.accept()
    # no await between accept and register: no event can reach an unaccepted socket
    channels.register(conn)
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except ValueError:
                await conn.send(ERROR, {"message": "Malformed JSON", "code": "InvalidOperation"})
                continue
            await session.dispatch(message)
    except WebSocketDisconnect as exc:
        logger.debug("socket closed %r code=%s", conn, exc.code)
    finally:
        channels.unregister(conn)
