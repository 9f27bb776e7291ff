import json
from typing import Optional, Type, TypeVar, Union

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel, StrictBool, ValidationError, field_validator

from .errors import DuplicateKeyError
from .state import PoolState

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 50

PayloadT = TypeVar("PayloadT", bound=BaseModel)


# ===========================
# Request Payloads
# ===========================

class KeyPayload(BaseModel):
    key: str

    @field_validator("key")
    @classmethod
    def key_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("key must not be blank")
        return value.strip()


class AddKeyRequest(KeyPayload):
    name: Optional[str] = None


class DeleteKeyRequest(KeyPayload):
    pass


class KeyStatusRequest(KeyPayload):
    enabled: StrictBool


class AdminError:
    """A rejected admin request, rendered as a JSON failure."""

    def __init__(self, message: str, status_code: int = 400):
        self.message = message
        self.status_code = status_code

    def to_response(self) -> JSONResponse:
        return JSONResponse({"success": False, "error": self.message}, status_code=self.status_code)


async def parse_payload(request: Request, model: Type[PayloadT]) -> Union[PayloadT, AdminError]:
    """Validate a JSON body against a payload model."""
    try:
        data = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return AdminError("Invalid JSON in request body")

    try:
        return model.model_validate(data)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'body'}: {err['msg']}" for err in e.errors()
        )
        return AdminError(f"Invalid request: {problems}")


def parse_positive_int(raw: Optional[str], name: str, default: int) -> Union[int, AdminError]:
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        return AdminError(f"'{name}' must be an integer")
    if value < 1:
        return AdminError(f"'{name}' must be at least 1")
    return value


def get_state(request: Request) -> PoolState:
    return request.app.state.pool


# ===========================
# Admin Endpoints
# ===========================

router = APIRouter(prefix="/admin")


@router.get("/keys")
async def list_keys(request: Request):
    """List every key in the pool."""
    return [record.to_dict() for record in get_state(request).registry.list()]


@router.post("/keys")
async def add_key(request: Request):
    """Add a key to the pool."""
    payload = await parse_payload(request, AddKeyRequest)
    if isinstance(payload, AdminError):
        return payload.to_response()

    try:
        record = get_state(request).registry.add(payload.key, payload.name)
    except DuplicateKeyError as e:
        return AdminError(str(e), status_code=409).to_response()

    return {"success": True, "key": record.to_dict()}


@router.delete("/keys")
async def delete_key(request: Request):
    """Remove a key from the pool."""
    payload = await parse_payload(request, DeleteKeyRequest)
    if isinstance(payload, AdminError):
        return payload.to_response()

    get_state(request).registry.remove(payload.key)
    return {"success": True}


@router.put("/key-status")
async def set_key_status(request: Request):
    """Enable or disable a key."""
    payload = await parse_payload(request, KeyStatusRequest)
    if isinstance(payload, AdminError):
        return payload.to_response()

    get_state(request).registry.set_enabled(payload.key, payload.enabled)
    return {"success": True}


@router.get("/stats")
async def get_stats(request: Request):
    return get_state(request).stats.snapshot().to_dict()


@router.get("/logs")
async def get_logs(request: Request, page: Optional[str] = None, limit: Optional[str] = None):
    """Page through the error log, newest first."""
    page_number = parse_positive_int(page, "page", DEFAULT_PAGE)
    if isinstance(page_number, AdminError):
        return page_number.to_response()
    page_size = parse_positive_int(limit, "limit", DEFAULT_LIMIT)
    if isinstance(page_size, AdminError):
        return page_size.to_response()

    entries, total = get_state(request).error_log.page(page_number, page_size)
    return {
        "logs": [entry.to_dict() for entry in entries],
        "total": total,
        "page": page_number,
        "limit": page_size,
    }


@router.post("/clear-logs")
async def clear_logs(request: Request):
    get_state(request).error_log.clear()
    logger.info("Error log cleared")
    return {"success": True}


@router.post("/reset-stats")
async def reset_stats(request: Request):
    get_state(request).stats.reset()
    return {"success": True}
