import asyncio
import contextlib
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from mobifaktura.api.v1 import advance, auth, budget_request, company, image, invoice, notification, saldo, user
from mobifaktura.common.error_handlers import register_error_handlers
from mobifaktura.core.config import settings
from mobifaktura.logger_config import logger
from mobifaktura.services.cleanup_service import cleanup_scheduler


@asynccontextmanager
async def lifespan(app: FastAPI):
    task = None
    if settings.ENABLE_CRON:
        task = asyncio.create_task(cleanup_scheduler())
    yield
    if task is not None:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("Cleanup scheduler stopped")


app = FastAPI(title="mobiFaktura", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)

# Register API routers
app.include_router(auth.router, prefix="/api/v1/auth", tags=["authentication"])
app.include_router(user.router, prefix="/api/v1/users", tags=["users"])
app.include_router(company.router, prefix="/api/v1/companies", tags=["companies"])
app.include_router(invoice.router, prefix="/api/v1/invoices", tags=["invoices"])
app.include_router(
    budget_request.router, prefix="/api/v1/budget-requests", tags=["budget-requests"])
app.include_router(saldo.router, prefix="/api/v1/saldo", tags=["saldo"])
app.include_router(advance.router, prefix="/api/v1/advances", tags=["advances"])
app.include_router(
    notification.router, prefix="/api/v1/notifications", tags=["notifications"])
app.include_router(image.router, prefix="/api", tags=["images"])


@app.get("/")
def read_root():
    return {"message": "Welcome to the mobiFaktura APIs!"}


@app.get("/api/health")
def health():
    return {"status": "ok"}
