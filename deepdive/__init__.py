"""
Deep Dive Backend Package.

FastAPI service layer for the publisher deep-dive analysis: comparative
A/B/C revenue tiering across two periods, new/lost entity detection, and
hierarchical drill-down with a result cache for instant back-navigation.

Subpackages:
    - api: FastAPI route handlers
    - core: Configuration, database, warehouse client, errors and dependencies
    - models: Pydantic schemas and enums
    - services: Business logic services
    - sql: Warehouse query and filter predicate builders
"""

__version__ = "1.0.0"
