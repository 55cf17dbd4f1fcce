"""API principal de SETU Tickets - Punto de entrada de la aplicación"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
import logging
from contextlib import asynccontextmanager

from shared.config import settings
from shared.database import connection
from shared.utils.rate_limiter import limiter, rate_limit_exceeded_handler
from services.ticket_lifecycle.routes.tickets import router as tickets_router, ticket_error_handler
from services.ticket_lifecycle.services.exceptions import TicketError

# Configurar logging
logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle events de la aplicación"""
    # Startup
    logger.info("Iniciando aplicación...")
    await connection.init_db()
    if settings.APP_ENV == "development":
        await connection.create_tables()
    logger.info("Aplicación iniciada")
    yield
    # Shutdown
    logger.info("Cerrando aplicación...")
    await connection.close_db()
    logger.info("Aplicación cerrada")


# Crear aplicación FastAPI
app = FastAPI(
    title="SETU Tickets API",
    description="Emisión, validación y check-in de tickets para eventos",
    version="1.0.0",
    lifespan=lifespan
)

# En desarrollo, permitir todos los orígenes para facilitar testing
if settings.APP_ENV == "development":
    logger.info("Modo desarrollo: CORS configurado para permitir todos los orígenes")
    allow_origins = ["*"]
    allow_credentials = False  # No se puede usar credentials con allow_origins=["*"]
else:
    allow_origins = [origin.strip() for origin in settings.CORS_ORIGINS.split(",") if origin.strip()]
    allow_credentials = True
    logger.info(f"CORS origins configurados: {allow_origins}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=allow_credentials,
    allow_methods=["GET", "POST", "PUT", "OPTIONS"],
    allow_headers=["*"],
    max_age=3600,
)

# Rate limiting y errores del ciclo de vida de tickets
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
app.add_exception_handler(TicketError, ticket_error_handler)

app.include_router(tickets_router, prefix="/api/v1/tickets", tags=["tickets"])


@app.get("/health")
async def health():
    """Health check endpoint"""
    return {"status": "ok", "service": "setu-tickets"}


@app.get("/ready")
async def ready():
    """Ready check endpoint - verifica conexión a la base de datos"""
    if connection.async_session_maker is None:
        return JSONResponse(status_code=503, content={"status": "not ready", "error": "database not initialized"})

    try:
        async with connection.async_session_maker() as session:
            await session.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Ready check failed: {e}")
        return JSONResponse(status_code=503, content={"status": "not ready", "error": str(e)})

    return {"status": "ready", "database": "connected"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.APP_DEBUG
    )
