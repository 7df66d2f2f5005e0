"""Web layer: FastAPI application, auth, middleware and routers."""
