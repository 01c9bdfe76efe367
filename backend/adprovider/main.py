"""AD Provider - Active Directory management backend"""
from contextlib import asynccontextmanager

from fastapi import FastAPI

from adprovider.api import logs, lookup, resources
from adprovider.config import settings
from adprovider.logger import get_logger

logger = get_logger("main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"{settings.app_name} starting, provider config: {settings.provider_config}")
    yield
    resources.close_provider()
    logger.info(f"{settings.app_name} stopped")


app = FastAPI(
    title=settings.app_name,
    description="Declarative management of Active Directory objects over WinRM and LDAP",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(resources.router)
app.include_router(lookup.router)
app.include_router(logs.router)


@app.get("/api/health")
async def health_check():
    return {"status": "ok"}
