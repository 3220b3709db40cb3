"""Application package for the discipleship tracking backend.

This package exposes the FastAPI application (``main``), the service,
repository and model modules behind it, and the async client SDK
(``client``, ``session_context``, ``access_guard``) used by front ends to
follow the signed-in user and gate views by role. Individual modules
contain the concrete implementations and documentation.
"""
