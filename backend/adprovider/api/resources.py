"""Resource lifecycle API endpoints"""
import threading
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from adprovider.config import load_provider_config, settings
from adprovider.errors import (
    ADError,
    AuthError,
    ConflictError,
    NotFoundError,
    TransportError,
    ValidationError,
)
from adprovider.logger import get_logger
from adprovider.provider import Provider
from adprovider.resources.base import Resource
from adprovider.resources.registry import RESOURCES, get_resource

logger = get_logger("api.resources")

router = APIRouter(prefix="/api/resources", tags=["resources"])

_provider: Optional[Provider] = None
_provider_lock = threading.Lock()

ERROR_STATUS = [
    (NotFoundError, 404),
    (ConflictError, 409),
    (ValidationError, 422),
    (TransportError, 502),
    (AuthError, 401),
]


def get_provider() -> Provider:
    """Provider shared by all requests, built from the provider config file on first use."""
    global _provider
    with _provider_lock:
        if _provider is None:
            _provider = Provider.from_config(load_provider_config(settings.provider_config))
        return _provider


def close_provider() -> None:
    global _provider
    with _provider_lock:
        provider, _provider = _provider, None
    if provider is not None:
        provider.close()


def status_for(error: ADError) -> int:
    for error_type, status in ERROR_STATUS:
        if isinstance(error, error_type):
            return status
    return 500


def http_error(error: ADError) -> HTTPException:
    status = status_for(error)
    if status == 500:
        logger.error(f"{type(error).__name__}: {error}")
    return HTTPException(status_code=status, detail=str(error))


def _lookup(resource_type: str) -> Resource:
    try:
        return get_resource(resource_type)
    except NotFoundError as e:
        raise http_error(e) from e


def _desired(resource: Resource, payload: Dict[str, Any]) -> BaseModel:
    try:
        return resource.model.model_validate(payload)
    except PydanticValidationError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e


def _state(resource: Resource, obj: BaseModel) -> Dict[str, Any]:
    return {"id": resource.identify(obj), "type": resource.name, "state": obj.model_dump(mode="json")}


@router.get("", response_model=list)
def list_types():
    """Resource types and the operations they support."""
    return [
        {
            "type": r.name,
            "create": r.create is not None,
            "update": r.update is not None,
            "delete": r.delete is not None,
        }
        for r in RESOURCES.values()
    ]


@router.get("/{resource_type}/{resource_id}", response_model=dict)
def read_resource(resource_type: str, resource_id: str, provider: Provider = Depends(get_provider)):
    """Observed state of an object."""
    resource = _lookup(resource_type)
    try:
        found = resource.read(provider, resource_id)
    except ADError as e:
        raise http_error(e)
    if found is None:
        raise HTTPException(status_code=404, detail=f"{resource_type} {resource_id} not found")
    return _state(resource, found)


@router.post("/{resource_type}", response_model=dict, status_code=201)
def create_resource(
    resource_type: str,
    payload: Dict[str, Any] = Body(...),
    provider: Provider = Depends(get_provider),
):
    """Create an object from its desired state."""
    resource = _lookup(resource_type)
    if resource.create is None:
        raise HTTPException(status_code=405, detail=f"{resource_type} can not be created")
    desired = _desired(resource, payload)
    try:
        created = resource.create(provider, desired)
    except ADError as e:
        raise http_error(e)
    return _state(resource, created)


@router.put("/{resource_type}/{resource_id}", response_model=dict)
def update_resource(
    resource_type: str,
    resource_id: str,
    payload: Dict[str, Any] = Body(...),
    provider: Provider = Depends(get_provider),
):
    """Converge an existing object on its desired state."""
    resource = _lookup(resource_type)
    if resource.update is None:
        raise HTTPException(status_code=405, detail=f"{resource_type} can not be updated in place")
    desired = _desired(resource, payload)
    try:
        updated = resource.update(provider, resource_id, desired)
    except ADError as e:
        raise http_error(e)
    if updated is None:
        raise HTTPException(status_code=404, detail=f"{resource_type} {resource_id} disappeared during update")
    return _state(resource, updated)


@router.delete("/{resource_type}/{resource_id}", response_model=dict)
def delete_resource(resource_type: str, resource_id: str, provider: Provider = Depends(get_provider)):
    """Remove an object; removing an absent object succeeds."""
    resource = _lookup(resource_type)
    if resource.delete is None:
        raise HTTPException(status_code=405, detail=f"{resource_type} can not be deleted")
    try:
        resource.delete(provider, resource_id)
    except ADError as e:
        raise http_error(e)
    return {"success": True, "message": f"{resource_type} {resource_id} deleted"}
