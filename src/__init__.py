"""
Portal Access Control

Role and organization based authorization for the customer portal API, with a
permanent, queryable audit trail of every access decision.

Subpackages:
- src.auth: roles, request context, principal extraction, organization
  resolution, decision engine, policy registry and audit sink
- src.data: audit record models and the MongoDB / in-memory audit stores
- src.config: environment configuration classes
- src.monitoring: structured logging and Prometheus exposure
- src.blueprints: health checks and audit reporting endpoints

The Flask application factory lives in src.app.
"""

# Package metadata and version information
__version__ = "1.0.0"
__title__ = "Portal Access Control"
__description__ = "Role and organization authorization engine with audit trail"

APPLICATION_NAME = "portal-access-control"

__all__ = [
    '__version__',
    '__title__',
    '__description__',
    'APPLICATION_NAME',
]
