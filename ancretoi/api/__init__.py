"""
API Module
==========

HTTP and WebSocket routers, versioned under ``v1``.
"""
