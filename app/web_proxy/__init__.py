"""
Forward proxy that relays ``/p/{target}`` to an arbitrary URL.

``{target}`` is the percent-encoded absolute URL (``encodeURIComponent`` in a
browser). HTML and XML responses are rewritten while they stream, so links,
scripts, images, frames and form actions point back through the proxy.
Every other content type passes through byte for byte.

Example:
    curl -i "http://localhost:8000/p/https%3A%2F%2Fexample.com%2F"
"""

from .route import router

__all__ = ["router"]
