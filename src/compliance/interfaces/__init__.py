"""
Compliance Interfaces Layer
===========================

Interface adapters (controllers) for the compliance reporting module.

Contains:
- Controllers: FastAPI route handlers and exception handlers

This is the outermost layer - handles HTTP requests/responses and
delegates to application services.
"""

from src.compliance.interfaces.controllers import compliance_router, register_exception_handlers

__all__ = ["compliance_router", "register_exception_handlers"]
