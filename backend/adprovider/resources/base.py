"""Resource adapter plumbing shared by every object type"""
from typing import Any, Callable, NamedTuple, Optional, Type

from pydantic import BaseModel

from adprovider.errors import NotFoundError
from adprovider.logger import get_logger, log_operation

logger = get_logger("resources")

Reader = Callable[[Any, str], Optional[BaseModel]]
Creator = Callable[[Any, BaseModel], BaseModel]
Updater = Callable[[Any, str, BaseModel], Optional[BaseModel]]
Deleter = Callable[[Any, str], None]


class Resource(NamedTuple):
    """Lifecycle callbacks of one object type.

    read returns None for an absent object; delete of an absent object
    succeeds. Types that cannot be created, changed or removed leave the
    corresponding callback as None.
    """
    name: str
    model: Type[BaseModel]
    identify: Callable[[BaseModel], str]
    read: Reader
    create: Optional[Creator] = None
    update: Optional[Updater] = None
    delete: Optional[Deleter] = None


def require_current(resource_name: str, resource_id: str, current: Optional[BaseModel]) -> BaseModel:
    """State to update from; updating an absent object is an error."""
    if current is None:
        raise NotFoundError(f"{resource_name} {resource_id} does not exist")
    return current


def record(provider, action: str, resource_name: str, resource_id: str, details: Optional[str] = None) -> None:
    """Write a mutation to the operation log."""
    log_operation(provider.operator, action, f"{resource_name}/{resource_id}", details)
