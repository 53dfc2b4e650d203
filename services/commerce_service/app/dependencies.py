from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request
from loguru import logger

from shared.request_context import OPERATOR_ID_HEADER, get_request_id

from .container import CommerceServices
from .errors import InternalError, InvalidParamError
from .services.tx import OpContext


def get_services(request: Request) -> CommerceServices:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise InternalError("commerce services are not initialised")
    return services


ServicesDep = Annotated[CommerceServices, Depends(get_services)]


def get_op_context(request: Request, services: ServicesDep) -> OpContext:
    """Build the per-call context from request headers and the configured timeout."""
    raw_operator = request.headers.get(OPERATOR_ID_HEADER)
    operator_id = 0
    if raw_operator:
        if not raw_operator.isdigit():
            logger.bind(request_id=get_request_id(request)).info("commerce.operator_header_rejected")
            raise InvalidParamError(f"{OPERATOR_ID_HEADER} must be a non-negative integer")
        operator_id = int(raw_operator)
    return OpContext.with_timeout(
        services.settings.request_timeout_seconds,
        request_id=get_request_id(request),
        operator_id=operator_id,
    )


OpContextDep = Annotated[OpContext, Depends(get_op_context)]
