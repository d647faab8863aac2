"""
Resource Organization Resolution

Determines which organization, if any, the current request targets. The route
parameter wins over the query parameter of the same name; when neither carries
a value the request has no organization context, which is a normal outcome for
endpoints that are not organization scoped.

No format or existence validation happens here. A malformed id simply fails to
match the caller's organization later on, and any existence check belongs to
the guarded handler.
"""

from typing import Optional

from src.auth.context import ORGANIZATION_ID_CLAIM, RequestContext

DEFAULT_ORGANIZATION_PARAM = ORGANIZATION_ID_CLAIM


def resolve_organization(
    context: RequestContext,
    param_name: str = DEFAULT_ORGANIZATION_PARAM
) -> Optional[str]:
    """
    Resolve the organization targeted by a request.

    Args:
        context: Request context exposing route and query parameters
        param_name: Name of the route/query parameter carrying the id

    Returns:
        The targeted organization id, or None for no organization context
    """
    route_value = context.get_route_param(param_name)
    if route_value:
        return route_value

    query_value = context.get_query_param(param_name)
    if query_value:
        return query_value

    return None


def organizations_match(left: Optional[str], right: Optional[str]) -> bool:
    """Case-insensitive comparison of organization ids, None never matches."""
    if not left or not right:
        return False
    return left.strip().casefold() == right.strip().casefold()


__all__ = ['resolve_organization', 'organizations_match', 'DEFAULT_ORGANIZATION_PARAM']
