"""
Blueprint Registration

Central registration of the HTTP surface for the application factory:

- health: liveness and readiness checks (unauthenticated)
- audit: read-only audit trail reporting, guarded by RequirePlatformStaff
"""

from typing import Dict, List, Tuple

import structlog
from flask import Blueprint, Flask

from src.blueprints.audit import audit_bp
from src.blueprints.health import health_blueprint

logger = structlog.get_logger(__name__)

# Registration order
BLUEPRINT_REGISTRY: List[Tuple[str, Blueprint]] = [
    ('health', health_blueprint),
    ('audit', audit_bp),
]


def register_blueprints(app: Flask) -> Dict[str, int]:
    """
    Register every blueprint on the application.

    Returns:
        Mapping of blueprint name to the number of routes it registered
    """
    routes: Dict[str, int] = {}
    for name, blueprint in BLUEPRINT_REGISTRY:
        app.register_blueprint(blueprint)
        routes[name] = sum(
            1 for rule in app.url_map.iter_rules() if rule.endpoint.startswith(f"{blueprint.name}.")
        )

    logger.info(
        "Blueprints registered",
        blueprints=[name for name, _ in BLUEPRINT_REGISTRY],
        total_routes=sum(routes.values()),
    )
    return routes


__all__ = ['register_blueprints', 'BLUEPRINT_REGISTRY']
