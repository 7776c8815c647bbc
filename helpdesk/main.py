import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from helpdesk.config import get_settings
from helpdesk.database.connection import close_mongo_connection, connect_to_mongo, get_database
from helpdesk.routers.admin import router as admin_router
from helpdesk.routers.auth import router as auth_router
from helpdesk.routers.chat import router as chat_router
from helpdesk.routers.conversations import router as conversations_router
from helpdesk.routers.presence import router as presence_router
from helpdesk.routers.problems import router as problems_router
from helpdesk.routers.profile import router as profile_router
from helpdesk.utils.logging import configure_logging
from helpdesk.utils.realtime_bus import close_bus, get_bus


logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):

    configure_logging()
    await connect_to_mongo()
    await get_bus()
    try:
        yield
    finally:
        await close_bus()
        await close_mongo_connection()


app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)


app.include_router(auth_router)
app.include_router(profile_router)
app.include_router(problems_router)
app.include_router(conversations_router)
app.include_router(chat_router)
app.include_router(presence_router)
app.include_router(admin_router)

app.mount(settings.MEDIA_URL, StaticFiles(directory=settings.MEDIA_ROOT, check_dir=False), name="media")


@app.get("/")
async def root():

    db = get_database()
    collections = await db.list_collection_names()
    return {"message": "Connected to MongoDB!", "collections": collections}
