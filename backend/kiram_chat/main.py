from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from kiram_chat.config import settings
from kiram_chat.core.exceptions import ChatError
from kiram_chat.database.connection import close_mongo_connection, connect_to_mongo, get_database
from kiram_chat.repositories.conversation_repository import ConversationRepository
from kiram_chat.repositories.message_repository import MessageRepository
from kiram_chat.routers.chat import router as chat_router
from kiram_chat.routers.conversations import router as conversations_router
from kiram_chat.services.attachment_service import AttachmentService
from kiram_chat.services.chat_service import ChatService
from kiram_chat.utils.log_config import configure_logging
from kiram_chat.utils.object_storage import get_storage
from kiram_chat.utils.realtime_bus import close_bus, get_bus


async def init_chat_service(db, bus, storage) -> ChatService:
    msg_repo = MessageRepository(db, bus)
    convo_repo = ConversationRepository(db, bus)
    await msg_repo.ensure_indexes()
    await convo_repo.ensure_indexes()
    return ChatService(msg_repo, convo_repo, bus, AttachmentService(storage))


@asynccontextmanager
async def lifespan(app: FastAPI):

    configure_logging()
    await connect_to_mongo()
    service = await init_chat_service(get_database(), await get_bus(), get_storage())
    app.state.chat_service = service
    try:
        yield
    finally:
        await service.wait_for_pending()
        await close_bus()
        await close_mongo_connection()


async def chat_error_handler(request: Request, exc: ChatError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail, "retryable": exc.retryable})


def create_app(lifespan=lifespan) -> FastAPI:
    app = FastAPI(title=settings.API_TITLE, version=settings.API_VERSION, debug=settings.DEBUG, lifespan=lifespan)
    app.add_exception_handler(ChatError, chat_error_handler)
    app.include_router(conversations_router)
    app.include_router(chat_router)
    if not settings.FIREBASE_ENABLED:
        app.mount("/uploads", StaticFiles(directory=settings.UPLOAD_DIR, check_dir=False), name="uploads")

    @app.get("/health")
    async def health():
        return {"status": "healthy"}

    return app


app = create_app()
