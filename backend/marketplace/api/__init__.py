"""
API Layer - FastAPI routers

One router per service, mounted under /api/v1 by marketplace.main.
"""
