"""
Blog security runtime: session lifecycle management and request rate limiting
on a shared TTL key-value store.
"""

__version__ = '1.0.0'
