# src/stakepool/api/routes.py
from __future__ import annotations

from fastapi import APIRouter

from stakepool.api.routes_parts.admin import router as admin_router
from stakepool.api.routes_parts.cycles import router as cycles_router
from stakepool.api.routes_parts.dev import router as dev_router
from stakepool.api.routes_parts.health import router as health_router
from stakepool.api.routes_parts.metrics import router as metrics_router
from stakepool.api.routes_parts.pool import router as pool_router
from stakepool.api.routes_parts.stakers import router as stakers_router

public_router = APIRouter()

# Versioned API surface
public_router.include_router(health_router, prefix="/v1", tags=["health"])
public_router.include_router(pool_router, prefix="/v1", tags=["pool"])
public_router.include_router(stakers_router, prefix="/v1", tags=["stakers"])
public_router.include_router(cycles_router, prefix="/v1", tags=["cycles"])
public_router.include_router(admin_router, prefix="/v1", tags=["admin"])

# Ops
public_router.include_router(metrics_router, prefix="/v1", tags=["metrics"])

# Dev-only (403 in prod mode)
public_router.include_router(dev_router, prefix="/v1", tags=["dev"])
