"""
API v1 package.

Contains versioned API routes for the medical participant registry API.
"""

from medreg.api.v1.routes import router

__all__ = ["router"]
