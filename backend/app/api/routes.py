from fastapi import APIRouter

from app.api.chats import router as chats_router
from app.api.notifications import router as notifications_router
from app.api.users import router as users_router

router = APIRouter()

router.include_router(users_router)
router.include_router(chats_router)
router.include_router(notifications_router)


@router.get("/", tags=["root"])
def read_root() -> dict[str, str]:
    return {"message": "Welcome to the Connectrix API"}


@router.get("/health", tags=["system"])
def api_health() -> dict[str, str]:
    return {"status": "ok"}
