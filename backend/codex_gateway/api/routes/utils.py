from fastapi import APIRouter

from codex_gateway.schemas import HealthResponse

router = APIRouter(tags=["utils"])


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    return HealthResponse()
