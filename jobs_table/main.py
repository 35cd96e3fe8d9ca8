"""
main.py - Main entry point for the grouped jobs table service
"""
import logging

import uvicorn

from jobs_table.api import create_api
from jobs_table.config import config_manager


def main():
    """
    Start the jobs table API server.
    """
    config = config_manager.load_config('env')
    logging.basicConfig(level=getattr(logging, config.log_level.upper(), logging.INFO))
    logger = logging.getLogger(__name__)

    api = create_api(config)
    app = api.get_app()

    logger.info(f"Starting jobs table on {config.api_host}:{config.api_port}...")
    logger.info(f"Backend: {config.backend_type} ({config.backend_uri}), cache: {config.cache_type}")

    uvicorn.run(app, host=config.api_host, port=config.api_port)


if __name__ == "__main__":
    main()
