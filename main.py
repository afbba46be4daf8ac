from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import SQLAlchemyError
from persistence.config import settings
from persistence.database.manager import DatabaseManager
from persistence.exceptions.errors import InvalidArgumentError
from persistence.middleware.logging_md import LoggingMiddleware
from persistence.logging.logger import LogConfig
from persistence.exceptions.handler import BusinessException, global_exception_handler
from apps.clinic.api.router import router as clinic_router
import apps.models  # noqa: F401  registers every table on the metadata


@asynccontextmanager
async def lifespan(app: FastAPI):
    manager = DatabaseManager.get_instance()
    if settings.DB_SCHEME == "sqlite":
        await manager.sql.create_all()
    yield
    await DatabaseManager.reset()


app = FastAPI(
    title=settings.APP_NAME,
    description=settings.APP_DESCRIPTION,
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

# Initialize logging configuration
LogConfig.setup_logging()
LogConfig.setup_sql_logging(echo=settings.DB_ECHO)

# Register global exception handlers
app.add_exception_handler(BusinessException, global_exception_handler)
app.add_exception_handler(RequestValidationError, global_exception_handler)
app.add_exception_handler(InvalidArgumentError, global_exception_handler)
app.add_exception_handler(SQLAlchemyError, global_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

app.add_middleware(LoggingMiddleware)

# Mount routers (prefix from config for easy override in private projects)
app.include_router(
    clinic_router,
    prefix=settings.API_V1_CLINIC_PREFIX,
    tags=["Clinic"]
)

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
