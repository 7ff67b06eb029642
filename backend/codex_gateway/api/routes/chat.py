from fastapi import APIRouter

from codex_gateway.api.deps import GatewayDep
from codex_gateway.schemas import ChatRequestBody, ChatResponseBody

router = APIRouter(tags=["chat"])


@router.post(
    "/chat",
    response_model=ChatResponseBody,
    response_model_by_alias=True,
    response_model_exclude_none=True,
)
async def chat(payload: ChatRequestBody, gateway: GatewayDep):
    """
    Run one turn against the session's agent. Agent failures are reported in
    the body with status "error", never as an HTTP error.
    """
    result = await gateway.handle_chat(
        payload.prompt,
        images=payload.image_paths,
        session_id=payload.session_id,
        approval_mode=payload.approval_mode,
    )
    return ChatResponseBody(
        session_id=result.session_id,
        messages=[m.model_dump(exclude_none=True) for m in result.messages],
        status=result.status,
        error=result.error,
    )
