# File: app/routers/live.py
import json
from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse
from app.core.deps import require_broker
from app.services.events import EventBroker

router = APIRouter(tags=["live"])

HEARTBEAT_SECONDS = 25.0


def format_sse(event: dict) -> str:
    return f"event: {event['type']}\ndata: {json.dumps(event, default=str)}\n\n"


@router.get("/live-feed")
async def live_feed(request: Request, broker: EventBroker = Depends(require_broker)):
    async def stream():
        with broker.subscription() as sub:
            yield ": connected\n\n"
            while not await request.is_disconnected():
                event = await sub.get(timeout=HEARTBEAT_SECONDS)
                if event is None:
                    # keeps proxies from closing an idle connection
                    yield ": heartbeat\n\n"
                    continue
                yield format_sse(event)

    return StreamingResponse(
        stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get("/live-feed/status")
def live_status(broker: EventBroker = Depends(require_broker)):
    return {"subscribers": broker.subscriber_count}
