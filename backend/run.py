#!/usr/bin/env python3
"""
Permission manager server
Starts the FastAPI application with uvicorn.
"""

import uvicorn
from dotenv import load_dotenv

# .env must be loaded before settings are first read
load_dotenv()

from permission_manager.config import get_settings
from permission_manager.core.logging import setup_logging

# use the application's logging setup instead of uvicorn's default log_config
setup_logging()

if __name__ == "__main__":
    settings = get_settings()
    uvicorn.run(
        "permission_manager.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_debug,
        log_level=settings.log_level.lower(),
        log_config=None,
    )
