"""
API v1
======

Routers mounted by ``ancretoi.main`` under ``/api/v1``.
"""
