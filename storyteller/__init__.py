"""
The Story Teller service.

Process lifecycle (dependency retry, graceful shutdown) plus the HTTP
listener and health surface around it.
"""

__version__ = "1.0.0"
