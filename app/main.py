from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.deps import close_gateway
from app.api.v1.gateway.router import router as gateway_router
from app.api.v1.payment_plans.installments_router import router as installments_router
from app.api.v1.payment_plans.router import router as payment_plans_router
from app.core.log_config import configure_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await close_gateway()


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title="Tuition Ledger", lifespan=lifespan)

    # CORS: allow frontend to call this API
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers
    app.include_router(payment_plans_router)
    app.include_router(installments_router)
    app.include_router(gateway_router)

    @app.get("/health", tags=["health"])
    async def health() -> dict:
        return {"status": "ok"}

    return app


app = create_app()
