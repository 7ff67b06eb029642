from fastapi import APIRouter, HTTPException

from codex_gateway.api.deps import GatewayDep
from codex_gateway.schemas import ErrorResponse, Message

router = APIRouter(prefix="/sessions", tags=["sessions"])


@router.delete(
    "/{session_id}",
    response_model=Message,
    responses={404: {"model": ErrorResponse}},
)
async def terminate_session(session_id: str, gateway: GatewayDep):
    """
    Release the session's agent and forget the id.
    """
    if not gateway.terminate(session_id):
        raise HTTPException(status_code=404, detail="Session not found")
    return Message(message="Session terminated")
