"""Resource type registry"""
from typing import Dict

from adprovider.errors import NotFoundError
from adprovider.resources import directory, membership, policy
from adprovider.resources.base import Resource

RESOURCES: Dict[str, Resource] = {
    r.name: r for r in directory.RESOURCES + membership.RESOURCES + policy.RESOURCES
}


def get_resource(name: str) -> Resource:
    try:
        return RESOURCES[name]
    except KeyError:
        raise NotFoundError(f"unknown resource type {name!r}") from None
