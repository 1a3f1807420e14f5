"""
featurehost Handlers

The contract feature authors implement, and resolution of handler references.
"""

from .base import FunctionHandler, Handler, HandlerResult, as_handler, resolve_handler

__all__ = [
    "Handler",
    "HandlerResult",
    "FunctionHandler",
    "as_handler",
    "resolve_handler",
]
