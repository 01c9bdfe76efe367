"""Directory lookup API endpoints"""
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import ValidationError as PydanticValidationError

from adprovider.api.resources import get_provider, http_error
from adprovider.errors import ADError, NotFoundError
from adprovider.provider import Provider
from adprovider.resources.lookup import LOOKUPS, get_lookup

router = APIRouter(prefix="/api/lookup", tags=["lookup"])


@router.get("", response_model=list)
def list_lookups():
    """Lookup types and the query parameters each accepts."""
    return [{"type": name, "parameters": list(lookup.query.model_fields)} for name, lookup in LOOKUPS.items()]


@router.get("/{lookup_type}", response_model=dict)
def run_lookup(lookup_type: str, request: Request, provider: Provider = Depends(get_provider)):
    """Find an existing object from the query string, e.g. /api/lookup/gpo?name=Baseline."""
    try:
        lookup = get_lookup(lookup_type)
    except NotFoundError as e:
        raise http_error(e) from e
    try:
        query = lookup.query.model_validate(dict(request.query_params))
    except PydanticValidationError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    try:
        found = lookup.find(provider, query)
    except ADError as e:
        raise http_error(e)
    if found is None:
        raise HTTPException(status_code=404, detail=f"no {lookup_type} matches {dict(request.query_params)}")
    return {"id": lookup.identify(found), "type": lookup_type, "state": found.model_dump(mode="json")}
