from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from loguru import logger
from framework.config import settings
from framework.database.manager import DatabaseManager
from framework.middleware.logging_md import LoggingMiddleware
from framework.logging.logger import LogConfig
from framework.exceptions.handler import BusinessException, global_exception_handler
from framework.repository.unit_of_work import UnitOfWork
from apps.members.api.router import router as member_router
from apps.members.service import MemberService


async def seed_demo_members(manager: DatabaseManager, count: int) -> None:
    """Populate an empty database with demo members (SEED_DEMO_MEMBERS > 0)."""
    async for session in manager.sql.get_session():
        async with UnitOfWork(session=session, actor=settings.DEFAULT_ACTOR) as uow:
            await MemberService(uow).seed_members(count)


@asynccontextmanager
async def lifespan(app: FastAPI):
    manager = DatabaseManager.get_instance()
    await manager.sql.connect()
    if settings.DB_AUTO_CREATE:
        await manager.sql.create_all()
        logger.info("Tables created from model metadata")
    if settings.SEED_DEMO_MEMBERS > 0:
        await seed_demo_members(manager, settings.SEED_DEMO_MEMBERS)
    yield
    await manager.sql.disconnect()


app = FastAPI(
    title=settings.APP_NAME,
    description=settings.APP_DESCRIPTION,
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan
)

# Initialize logging configuration
LogConfig.setup_logging()

# Register global exception handlers
app.add_exception_handler(BusinessException, global_exception_handler)
app.add_exception_handler(RequestValidationError, global_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

app.add_middleware(LoggingMiddleware)

# Mount routers (prefix from config for easy override in private projects)
app.include_router(
    member_router,
    prefix=settings.API_MEMBERS_PREFIX,
    tags=["Members"]
)

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
