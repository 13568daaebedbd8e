"""
Core Module
===========

Errors, security primitives and rate limiting.
"""
