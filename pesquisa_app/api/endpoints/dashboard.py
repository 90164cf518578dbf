import asyncio
import logging
from typing import List

from fastapi import APIRouter, Depends, Query, WebSocket, status

from ... import auth, models, schemas
from ...dashboard import AssignmentFetcher, WatcherRegistry, reconcile
from ..deps import get_fetcher, get_watchers

logger = logging.getLogger(__name__)

router = APIRouter()
ws_router = APIRouter()


@router.get("/me/assignments", response_model=List[schemas.AssignmentView])
async def my_assignments(
    user: models.User = Depends(auth.get_current_user),
    fetcher: AssignmentFetcher = Depends(get_fetcher),
):
    rows = await fetcher(user.id, requester=user)
    return reconcile(rows)


@router.get("/{researcher_id}/assignments", response_model=List[schemas.AssignmentView])
async def researcher_assignments(
    researcher_id: str,
    user: models.User = Depends(auth.get_current_user),
    fetcher: AssignmentFetcher = Depends(get_fetcher),
):
    rows = await fetcher(researcher_id, requester=user)
    return reconcile(rows)


@ws_router.websocket("/ws/dashboard")
async def dashboard_socket(
    websocket: WebSocket,
    token: str = Query(...),
    watchers: WatcherRegistry = Depends(get_watchers),
):
    """
    Live researcher dashboard. The connection is the mounted view: a snapshot
    is pushed on every state change, the text frame "refresh" asks for a
    manual cycle, and disconnecting releases the subscription and timer. A
    newer connection for the same researcher closes this one with 1008.
    """
    async with websocket.app.state.session_factory() as db:
        user = await auth.get_current_session(db, token)
        await db.commit()
    if user is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    snapshots: asyncio.Queue = asyncio.Queue()

    async def pump():
        while True:
            snapshot = await snapshots.get()
            if snapshot is None:
                # A newer dashboard for the same researcher took over
                await websocket.close(
                    code=status.WS_1008_POLICY_VIOLATION, reason="Dashboard opened elsewhere"
                )
                return
            await websocket.send_json(snapshot.model_dump(mode="json"))

    watcher = await watchers.mount(
        user.id,
        on_update=snapshots.put_nowait,
        requester=user,
        on_superseded=lambda: snapshots.put_nowait(None),
    )
    sender = asyncio.create_task(pump())
    logger.info("Dashboard mounted for %s", user.email)
    try:
        # Runs until the client disconnects, also after a superseded close
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            if (message.get("text") or "").strip().lower() == "refresh":
                watcher.trigger()
        logger.info("Dashboard unmounted for %s", user.email)
    finally:
        await watchers.unmount(watcher)
        sender.cancel()
        await asyncio.gather(sender, return_exceptions=True)
