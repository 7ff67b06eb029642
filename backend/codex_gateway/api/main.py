from fastapi import APIRouter

from codex_gateway.api.routes import chat, sessions, utils

api_router = APIRouter()
api_router.include_router(utils.router)
api_router.include_router(chat.router)
api_router.include_router(sessions.router)
