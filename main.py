"""
Entry point for the mathflat-sync service.

Run with:
    uvicorn main:app --port 8100
    python main.py
"""
import sys
from pathlib import Path

# Project root on the path so `config` resolves
sys.path.insert(0, str(Path(__file__).parent))

import uvicorn
from config import get_settings
from mathflat_sync.api.main import app  # noqa: F401
from mathflat_sync.core.logging import configure_logging

settings = get_settings()

if __name__ == "__main__":
    configure_logging(settings)
    uvicorn.run(
        "mathflat_sync.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )
