"""
Shared API Layer
================

Middleware and handlers shared by every router.
"""
