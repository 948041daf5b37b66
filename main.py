import asyncio
import logging
from pathlib import Path

import httpx
from fastapi import FastAPI

from config import settings
from handlers import router as handlers_router
from stores import StorefrontSessions

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

app = FastAPI(title="Icy Tales storefront")
app.state.sessions = StorefrontSessions(
    settings.storage_dir,
    httpx.Client(base_url=settings.api_base_url, timeout=settings.request_timeout),
    default_country=settings.default_country,
    max_sessions=settings.max_sessions,
)


@app.on_event("startup")
def ensure_writable_storage():
	"""Make sure the directory holding the session storage files exists. On
	hosts where the project tree is read-only the default lives in /tmp; a
	failure here is logged and the app keeps serving."""
	try:
		path = Path(settings.storage_dir)
		path.mkdir(parents=True, exist_ok=True)
		logging.info(f"Storefront sessions kept in {path}")
	except OSError as e:
		logging.exception("Failed to prepare storage directory: %s", e)


@app.on_event("startup")
async def refresh_exchange_rates():
	"""Fire-and-forget fetch of live conversion rates, once per process."""
	if not settings.fetch_live_rates:
		return
	asyncio.get_running_loop().run_in_executor(
		None,
		app.state.sessions.refresh_rates,
		settings.exchange_api_url,
		settings.request_timeout,
	)


@app.on_event("shutdown")
def close_backend_client():
	app.state.sessions.http.close()


app.include_router(handlers_router) # storefront pages and actions
