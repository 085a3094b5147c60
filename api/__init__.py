"""api/ -- FastAPI application factory, transport models and v1 routers."""
