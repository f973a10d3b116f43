from fastapi import APIRouter

from loan_console.api.v1.routers import health, loan_queue

api_router = APIRouter()
api_router.include_router(health.router)
api_router.include_router(loan_queue.router)

__all__ = ["api_router"]
