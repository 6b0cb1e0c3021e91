"""
Seller Watch Search - entry point

Loads configuration, builds the application state and serves the API.

Run:
    python main.py
    uvicorn main:app --port 8000
"""

import logging

import uvicorn

from config import Settings, load_environment
from services.app_factory import create_app
from services.app_state import AppState

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(message)s',
    datefmt='%H:%M:%S'
)
logger = logging.getLogger(__name__)

load_environment()
settings = Settings.from_env()
if settings.server.debug:
    logging.getLogger().setLevel(logging.DEBUG)

app = create_app(AppState(settings=settings))


if __name__ == "__main__":
    print("\n" + "=" * 60)
    print("Seller Watch Search")
    print("=" * 60)
    print(f"API: http://{settings.server.host}:{settings.server.port}/api/search")
    print(f"Marketplace: {settings.ebay.marketplace_id} ({settings.ebay.environment})")
    print(f"Simulation mode: {settings.server.simulation_mode}")
    print("=" * 60 + "\n")

    uvicorn.run(
        "main:app",
        host=settings.server.host,
        port=settings.server.port,
        reload=False,
    )
