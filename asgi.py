"""
asgi.py -- Process entry point for the access-control API.

Settings are read from the environment exactly once here and handed to the
app factory. With ENVIRONMENT=production and no SECRET_KEY, constructing
Settings raises and the process refuses to start.

Run with:  uvicorn asgi:app --reload
"""

from api.main import create_app
from core.config import get_settings

app = create_app(get_settings())
