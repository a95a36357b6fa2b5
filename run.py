#!/usr/bin/env python3
"""
Sales Case Management Entry Point

Starts the FastAPI server with settings from SALES_CMS_* environment variables.
"""

import sys
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from sales_cms.config import get_config
from sales_cms.logging_config import setup_logging
from sales_cms.api import run_server


if __name__ == "__main__":
    config = get_config()
    logger = setup_logging(config.log_level, log_format=config.log_format, log_file=config.log_file)
    logger.info("Starting Sales Case Management API", extra={"extra": {
        "host": config.api_host,
        "port": config.api_port,
        "storage_backend": config.storage_backend,
        "database_path": config.database_path,
    }})

    try:
        run_server(
            host=config.api_host,
            port=config.api_port,
            workers=config.api_workers,
            log_level=config.log_level.lower()
        )
    except KeyboardInterrupt:
        logger.info("Shutting down")
    except Exception as e:
        logger.error(f"Error starting server: {e}")
        sys.exit(1)
