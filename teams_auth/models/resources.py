"""Resource scopes tracked by the token extractor and refreshed together."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class ResourceScope:
    """An audience a bearer token can be issued for.

    ``host`` identifies the resource inside an MSAL ``target`` string;
    ``markers`` must all appear in the target for the extractor to use it.
    """

    name: str
    host: str
    markers: Tuple[str, ...]

    @property
    def refresh_scopes(self) -> str:
        return f"https://{self.host}/.default offline_access"

    def matches(self, target: str) -> bool:
        lowered = target.lower()
        return all(marker.lower() in lowered for marker in self.markers)

    def matches_host(self, target: str) -> bool:
        return self.host in target.lower()


SUBSTRATE = ResourceScope(
    name="substrate",
    host="substrate.office.com",
    markers=("substrate.office.com", "SubstrateSearch"),
)
SPACES = ResourceScope(
    name="spaces",
    host="api.spaces.skype.com",
    markers=("api.spaces.skype.com",),
)
CHAT_AGGREGATOR = ResourceScope(
    name="chat_aggregator",
    host="chatsvcagg.teams.microsoft.com",
    markers=("chatsvcagg.teams.microsoft.com",),
)
GRAPH = ResourceScope(
    name="graph",
    host="graph.microsoft.com",
    markers=("graph.microsoft.com",),
)

# Refresh order; it is also the order used when reporting results.
TRACKED_RESOURCES: Tuple[ResourceScope, ...] = (SUBSTRATE, SPACES, CHAT_AGGREGATOR, GRAPH)

# The resource whose expiry decides whether the session is healthy.
CANONICAL_RESOURCE = SUBSTRATE

RESOURCES_BY_NAME = {resource.name: resource for resource in TRACKED_RESOURCES}


__all__ = [
    "CANONICAL_RESOURCE",
    "CHAT_AGGREGATOR",
    "GRAPH",
    "RESOURCES_BY_NAME",
    "ResourceScope",
    "SPACES",
    "SUBSTRATE",
    "TRACKED_RESOURCES",
]
