"""
==============================================================================
WebSocket Package
==============================================================================

Real-time WebSocket handlers for scanning.

Handlers:
---------
- scanner: One ScannerSession per connection (/ws/scan)
- surfaces: Confirmation prompts answered by the browser

==============================================================================
"""

from .scanner import router as scanner_router

__all__ = ["scanner_router"]
