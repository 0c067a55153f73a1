"""Route selection — which connections an event goes to.

Most specific target wins:

1. request_id with at least one watching connection → those connections
2. user_id (top level or request_data.user_id) → that user's connections
3. otherwise → every connection

A request_id nobody is watching yet falls through to the user, which covers
clients that connect after the job already started emitting. Raw payloads
always broadcast.
"""

import enum
from typing import NamedTuple, Optional

from adsync.realtime.envelope import Envelope, RawEnvelope
from adsync.realtime.registry import ConnectionRegistry


class RouteKind(str, enum.Enum):
    JOB = "job"
    USER = "user"
    BROADCAST = "broadcast"


class Route(NamedTuple):
    kind: RouteKind
    key: Optional[str] = None


BROADCAST = Route(RouteKind.BROADCAST)


def resolve_route(envelope: Envelope, registry: ConnectionRegistry) -> Route:
    """Pick the delivery target for an envelope."""
    if isinstance(envelope, RawEnvelope):
        return BROADCAST

    job_id = envelope.job_id
    if job_id is not None and registry.has_job_connections(job_id):
        return Route(RouteKind.JOB, job_id)

    user_id = envelope.target_user_id
    if user_id is not None:
        return Route(RouteKind.USER, user_id)
    return BROADCAST


def deliver(route: Route, message: str, registry: ConnectionRegistry) -> int:
    """Hand the message to the registry. Returns connections enqueued on."""
    if route.kind is RouteKind.JOB:
        return registry.send_to_job(route.key, message)
    if route.kind is RouteKind.USER:
        return registry.send_to_user(route.key, message)
    return registry.send_to_all(message)
