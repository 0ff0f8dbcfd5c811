#!/usr/bin/env python3
"""
ComicVoice FastAPI Server

Audio generation service for comic/video projects.
Provides async API endpoints for bulk audio jobs, scene utterances and scene audio.
"""
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from app.config import APP_NAME, APP_VERSION, SERVER_HOST, SERVER_PORT, get_generation_settings
from app.database import init_db, close_db
from app.services.job_processor import get_job_processor
from app.services.audio_generator import get_audio_generator
from app.routers import health_router, bulk_audio_router, utterances_router, audio_router, files_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan context manager.

    Startup:
        - Initialize database and create tables
        - Report configured TTS providers
        - Start job processor (recovers interrupted jobs)

    Shutdown:
        - Stop job processor
        - Close database connections
    """
    print(f'Starting {APP_NAME} v{APP_VERSION}...')

    # Initialize database
    print('Initializing database...')
    await init_db()

    settings = get_generation_settings()
    generator = get_audio_generator()
    configured = [name.value for name, provider in generator.providers.items() if provider.is_configured]
    if configured:
        print(f'Configured TTS providers: {", ".join(configured)}')
    else:
        print('No TTS provider credentials found. Set GOOGLE_TTS_API_KEY, FISH_AUDIO_API_TOKEN or ELEVENLABS_API_KEY')
    print(f'Fallback voice: {settings.fallback_provider}/{settings.fallback_voice_id}')

    # Start job processor
    print('Starting job processor...')
    job_processor = get_job_processor()
    await job_processor.start()

    print(f'Server ready at http://{SERVER_HOST}:{SERVER_PORT}')
    print('API documentation available at /docs')

    yield

    # Shutdown
    print('Shutting down...')

    # Stop job processor
    await job_processor.stop()

    # Close database
    await close_db()

    print('Shutdown complete.')


# Create FastAPI application
app = FastAPI(
    title=APP_NAME,
    description='Audio generation service for comic and video projects.',
    version=APP_VERSION,
    lifespan=lifespan,
)

# Register routers
app.include_router(health_router)
app.include_router(bulk_audio_router)
app.include_router(utterances_router)
app.include_router(audio_router)
app.include_router(files_router)


if __name__ == '__main__':
    uvicorn.run(
        app,
        host=SERVER_HOST,
        port=SERVER_PORT,
        reload=False,
        log_level='info',
    )
