"""Route modules for the HTTP API. Each exposes ``create_router()``."""
