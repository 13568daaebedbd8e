"""
Services
========

Business logic layer. Service classes take an ``AsyncSession``; the
day-state cache and toolbar helpers work over a ``KeyValueStorage``.
"""
