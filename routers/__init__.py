from fastapi import APIRouter

from routers import plaid_sync as plaid_sync_router

router = APIRouter()
router.include_router(plaid_sync_router.router, tags=["Plaid Sync"])
