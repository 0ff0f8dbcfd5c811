"""
FastAPI routers.
"""
from app.routers.health import router as health_router
from app.routers.bulk_audio import router as bulk_audio_router
from app.routers.utterances import router as utterances_router
from app.routers.audio import router as audio_router
from app.routers.files import router as files_router

__all__ = ['health_router', 'bulk_audio_router', 'utterances_router', 'audio_router', 'files_router']
