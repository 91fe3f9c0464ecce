from fastapi import APIRouter

from sendledger.api.admin import router as admin_router
from sendledger.api.auth import router as auth_router
from sendledger.api.email import router as email_router

api_router = APIRouter()

# Auth link routes at /auth/*
api_router.include_router(auth_router, prefix="/auth", tags=["auth"])

# API routes at /api/*
api_router.include_router(email_router, prefix="/api/email", tags=["email"])
api_router.include_router(admin_router, prefix="/api/admin", tags=["admin"])
