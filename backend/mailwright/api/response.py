import uuid

from fastapi import Request


def _meta(request: Request) -> dict:
    meta = {
        "request_id": getattr(request.state, "request_id", None) or str(uuid.uuid4()),
        "user_key": getattr(request.state, "user_key", None),
    }
    action = getattr(request.state, "addon_action", None)
    if action:
        meta["addon_action"] = action
    return meta


def envelope(request: Request, data: dict | None, error: dict | None = None) -> dict:
    return {"data": data, "meta": _meta(request), "error": error}


def exception_envelope(
    request: Request,
    status_code: int,
    message: str,
    code: str,
    details: dict | None = None,
    *,
    retryable: bool = False,
) -> dict:
    """Error envelope; ``retryable`` tells the add-on host whether to offer a retry."""
    meta = _meta(request)
    meta["status_code"] = status_code
    return {
        "success": False,
        "errors": [{"code": code, "message": message, "retryable": retryable, "details": details or {}}],
        "meta": meta,
    }
