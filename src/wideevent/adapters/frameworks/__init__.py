"""Web framework adapters: ASGI ingest app, capture middleware, FastAPI router."""
