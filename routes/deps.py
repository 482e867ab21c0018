# routes/deps.py
from fastapi import Header, HTTPException, Request

from schemas.principal import Principal


def get_container(request: Request):
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(
            status_code=503,
            detail={"error_code": "SERVICE_STARTING", "error_message": "Service is not ready yet"},
        )
    return container


def get_admission(request: Request):
    return get_container(request).admission


def get_queue(request: Request):
    return get_container(request).queue


def get_principal(request: Request, authorization: str = Header(None)) -> Principal:
    return get_container(request).verifier.verify_header(authorization)


def is_operator(principal: Principal, operator_ids) -> bool:
    candidates = {principal.user_id.lower()}
    if principal.email:
        candidates.add(principal.email.lower())
    return bool(candidates & set(operator_ids or ()))


def get_operator(request: Request, authorization: str = Header(None)) -> Principal:
    principal = get_principal(request, authorization)
    operator_ids = getattr(get_container(request), "operator_ids", frozenset())
    if not is_operator(principal, operator_ids):
        raise HTTPException(
            status_code=403,
            detail={"error_code": "AUTH_FORBIDDEN", "error_message": "Operator access required"},
        )
    return principal
