"""
asgi.py -- Application assembly for the library portal auth core.

This is the ONLY file that mounts both the bearer API (api/) and the cookie
session flow (web/) on one ASGI app. api/main.py does not import web/.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app
from web.routes import router as web_router

# Mount the cookie session router here, not in api/main.py.
app.include_router(web_router, tags=["Session"])
