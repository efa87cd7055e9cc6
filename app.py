from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from typing import Dict, Iterable, Union
import asyncio

from constants import CORS_ORIGINS, LOG_FILE, LOG_LEVEL, SEND_QUEUE_SIZE
from logging_config import get_logger, setup_logging
from routers.messages import Delivery, MessageRouter
from routers.rooms import rooms_router
from schemas.events import encode_event
from schemas.rooms import HealthResponse

# Setup logging
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)
logger = get_logger(__name__)


class ChannelSender:
    """Outbound side of one WebSocket.

    Payloads are queued and written by a dedicated task, so routing an event never
    waits on a slow recipient. The first failed write, or a full queue, marks the
    channel dead.
    """

    def __init__(self, session_id: str, websocket: WebSocket, maxsize: int = SEND_QUEUE_SIZE):
        self.session_id = session_id
        self.websocket = websocket
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.alive = True
        self._task = None

    def start(self):
        self._task = asyncio.create_task(self._run())

    def send(self, text: str):
        if not self.alive:
            return
        try:
            self.queue.put_nowait(text)
        except asyncio.QueueFull:
            self.alive = False
            logger.warning(
                f"Send queue for session {self.session_id} is full ({self.queue.maxsize} frames), dropping channel output"
            )

    async def _run(self):
        while True:
            text = await self.queue.get()
            try:
                await self.websocket.send_text(text)
            except Exception as e:
                self.alive = False
                logger.warning(f"Send to session {self.session_id} failed, dropping channel output: {e}")
                break

    async def close(self):
        self.alive = False
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass


def deliver(channels: Dict[str, ChannelSender], deliveries: Iterable[Delivery]):
    """Hand router deliveries to their channels. Missing or dead channels are skipped."""
    encoded: Dict[int, str] = {}
    count = 0
    for delivery in deliveries:
        sender = channels.get(delivery.session_id)
        if sender is None or not sender.alive:
            logger.debug(f"No open channel for session {delivery.session_id}, dropping {delivery.event.type}")
            continue
        # Broadcasts share one event object; encode it once
        key = id(delivery.event)
        if key not in encoded:
            encoded[key] = encode_event(delivery.event)
        sender.send(encoded[key])
        count += 1
    if count:
        logger.debug(f"Queued {count} deliveries")


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.message_router = MessageRouter()
    app.state.channels = {}
    logger.info("Relay state initialized")
    yield
    for sender in list(app.state.channels.values()):
        await sender.close()
    app.state.channels.clear()
    app.state.message_router.clear()
    logger.info("Relay state cleared")


app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(rooms_router)

logger.info("FastAPI application initialized")


@app.get("/health", response_model=HealthResponse)
async def health(request: Request):
    message_router: MessageRouter = request.app.state.message_router
    return HealthResponse(status="ok", sessions=len(message_router.registry), rooms=len(message_router.directory))


def _frame_data(message: dict) -> Union[str, bytes]:
    text = message.get("text")
    if text is not None:
        return text
    return message.get("bytes") or b""


@app.websocket("/")
@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """One WebSocket is one session. Frames go through the router; close runs the leave path."""
    message_router: MessageRouter = websocket.app.state.message_router
    channels: Dict[str, ChannelSender] = websocket.app.state.channels

    await websocket.accept()
    session_id, deliveries = message_router.connect()
    sender = ChannelSender(session_id, websocket)
    channels[session_id] = sender
    sender.start()
    client = websocket.client.host if websocket.client else "unknown"
    logger.info(f"WebSocket accepted for session {session_id} from {client}")
    deliver(channels, deliveries)

    message_count = 0
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                logger.info(f"WebSocket disconnected normally for session {session_id}")
                break
            message_count += 1
            logger.debug(f"Received frame #{message_count} from session {session_id}")
            deliver(channels, message_router.receive(session_id, _frame_data(message)))
    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected for session {session_id}")
    except Exception as e:
        logger.error(f"WebSocket error for session {session_id}: {e}", exc_info=True)
    finally:
        channels.pop(session_id, None)
        await sender.close()
        deliver(channels, message_router.disconnect(session_id))
