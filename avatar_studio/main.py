#!/usr/bin/env python3
"""
Avatar Studio API entry point
"""

import sys
from typing import Optional

import uvicorn

from .api.studio_api import initialize_app
from .config.settings import Settings, load_settings


def serve(settings: Settings, host: Optional[str] = None, port: Optional[int] = None):
    """Run the API with uvicorn"""
    app = initialize_app(settings)
    uvicorn.run(
        app,
        host=host or settings.api.host,
        port=port or settings.api.port,
        log_level=settings.logging.level.lower()
    )


def main(config_path: Optional[str] = None):
    """Main entry point for the Avatar Studio API"""
    try:
        settings = load_settings(config_path)

        print("Starting Avatar Studio API")
        print("=" * 50)
        print(f"Base storage directory: {settings.storage.base_storage_dir}")
        print(f"Public file URL: {settings.storage.public_base_url}")
        print(f"API host: {settings.api.host}:{settings.api.port}")
        print(f"Docs: http://{settings.api.host}:{settings.api.port}/docs")
        print("=" * 50)

        serve(settings)

    except Exception as e:
        print(f"Failed to start Avatar Studio API: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
