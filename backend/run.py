"""Run script with proper environment loading"""
import os
import sys
from pathlib import Path

BACKEND_DIR = Path(__file__).resolve().parent
BASE_DIR = BACKEND_DIR.parent
sys.path.insert(0, str(BACKEND_DIR))

from dotenv import load_dotenv

load_dotenv(BASE_DIR / ".env", override=True)

# Uploads and the default SQLite file are relative to the backend directory
os.chdir(BACKEND_DIR)

if __name__ == "__main__":
    import uvicorn

    from benefits_bpp.core.config import get_settings

    settings = get_settings()

    from main import app

    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
    )
