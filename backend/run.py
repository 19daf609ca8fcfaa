#!/usr/bin/env python3
# backend/run.py
"""
Development server runner.

Reads the same settings as production; point DATABASE_URL at a scratch
database for local work.
"""
import os

import uvicorn

from agenda.core.config import settings

if __name__ == "__main__":
    port = int(os.getenv("PORT", "8000"))
    print(f"Starting agenda API ({settings.environment}) on http://localhost:{port}")
    print(f"API docs: http://localhost:{port}/docs")

    uvicorn.run(
        "agenda.main:app",
        host="0.0.0.0",
        port=port,
        reload=settings.environment == "development",
        log_level="info",
    )
