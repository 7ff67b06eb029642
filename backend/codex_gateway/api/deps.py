from typing import Annotated

from fastapi import Depends, Request

from codex_gateway.services.gateway import SessionGateway


def get_gateway(request: Request) -> SessionGateway:
    return request.app.state.gateway


GatewayDep = Annotated[SessionGateway, Depends(get_gateway)]
