"""
Feature modules live under this package.

Each module owns its routes and services and reuses the platform primitives
(auth, RBAC, audit, DB session, tagged results).
"""
