"""ASGI entry point: uvicorn hotelcore.api.app:app"""

from hotelcore.api.factory import create_app

app = create_app()
