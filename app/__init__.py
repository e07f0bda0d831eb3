"""Library lending backend.

Layers:
- ``app.domain``: pydantic models for books, users and transactions
- ``app.infrastructure``: Redis and in-memory stores
- ``app.services``: lending engine, authorization policy, catalog, accounts
- ``app.api``: FastAPI routes
"""
