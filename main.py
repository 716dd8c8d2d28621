"""
Main FastAPI application entry point
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends
from fastapi.middleware.cors import CORSMiddleware

from administration.api import router as admin_router
from kyc_review.api import router as kyc_router
from record_versioning.api import investors_router, properties_router
from shared.auth import get_current_user, permission_summary, Actor
from shared.config import settings, configure_logging
from shared.database import get_database, init_database, cleanup_database


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    init_database()
    yield
    cleanup_database()


app = FastAPI(
    title=settings.PROJECT_NAME,
    description="Versioned investor and property records with KYC review and bulk administration",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(investors_router, prefix=f"{settings.API_V1_STR}/investors", tags=["investors"])
app.include_router(properties_router, prefix=f"{settings.API_V1_STR}/properties", tags=["properties"])
app.include_router(kyc_router, prefix=f"{settings.API_V1_STR}/kyc", tags=["kyc"])
app.include_router(admin_router, prefix=f"{settings.API_V1_STR}/admin", tags=["admin"])


@app.get(f"{settings.API_V1_STR}/me/permissions")
async def my_permissions(current_user: Actor = Depends(get_current_user)):
    return permission_summary(current_user)


@app.get("/")
async def root():
    return {"message": settings.PROJECT_NAME, "version": "1.0.0"}


@app.get("/health")
async def health_check():
    database_ok = get_database().health_check()
    return {"status": "healthy" if database_ok else "degraded", "database": database_ok}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
