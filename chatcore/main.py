import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from chatcore.config import config
from chatcore.database.connection import close_mongo_connection, connect_to_mongo, get_database
from chatcore.errors import ChatError
from chatcore.routers.conversations import router as conversations_router
from chatcore.routers.messages import router as messages_router
from chatcore.routers.realtime import router as realtime_router
from chatcore.utils.realtime_bus import create_bus


logger = logging.getLogger(__name__)


def _configure_logging() -> None:
    root_logger = logging.getLogger()
    if root_logger.handlers:
        return
    logging.basicConfig(level=config.LOG_LEVEL.upper(), format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")


_configure_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):

    await connect_to_mongo()
    app.state.bus = create_bus(config)
    await app.state.bus.start()
    try:
        yield
    finally:
        await app.state.bus.close()
        await close_mongo_connection()


app = FastAPI(title="chatcore messaging API", lifespan=lifespan)


@app.exception_handler(ChatError)
async def chat_error_handler(request: Request, exc: ChatError):
    logger.debug("%s %s rejected: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


app.include_router(conversations_router)
app.include_router(messages_router)
app.include_router(realtime_router)


@app.get("/")
async def root():

    db = get_database()
    collections = await db.list_collection_names()
    return {"message": "Connected to MongoDB!", "collections": collections}
