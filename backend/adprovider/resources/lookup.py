"""Read-only lookups of existing directory objects by name, DN or other identity"""
from typing import Any, Callable, Dict, NamedTuple, Optional, Type

from pydantic import BaseModel

from adprovider.errors import NotFoundError
from adprovider.models.lookup import ComputerQuery, GPOQuery, GroupQuery, OrgUnitQuery, UserQuery
from adprovider.services import computer, gpo, group, ou, user


class Lookup(NamedTuple):
    """Finds one object from a query; find returns None when nothing matches."""
    name: str
    query: Type[BaseModel]
    find: Callable[[Any, BaseModel], Optional[BaseModel]]
    identify: Callable[[BaseModel], str]


def _guid(obj) -> str:
    return obj.guid


def _dn(obj) -> str:
    return obj.dn


LOOKUPS: Dict[str, Lookup] = {
    lookup.name: lookup
    for lookup in [
        Lookup("user", UserQuery, lambda p, q: user.lookup(p, q.user_id), _guid),
        Lookup("computer", ComputerQuery, lambda p, q: computer.lookup(p, q.guid, q.dn), _guid),
        Lookup("ou", OrgUnitQuery, lambda p, q: ou.lookup(p, q.dn, q.name, q.path), _guid),
        Lookup("gpo", GPOQuery, lambda p, q: gpo.lookup(p, q.name, q.guid, q.domain), _guid),
        Lookup("group", GroupQuery, lambda p, q: group.lookup(p, q.dn, q.domain_dn), _dn),
    ]
}


def get_lookup(name: str) -> Lookup:
    try:
        return LOOKUPS[name]
    except KeyError:
        raise NotFoundError(f"unknown lookup type {name!r}") from None
