#!/usr/bin/env python3
"""
Approval Workflow Service Entry Point

Starts the FastAPI server with the SLA scanner running in the background.
"""

import sys

import uvicorn

from merch_planning.api import create_app
from merch_planning.config import get_config
from merch_planning.logging_config import setup_logging
from merch_planning.system import ApprovalSystem


if __name__ == "__main__":
    config = get_config()
    logger = setup_logging(config.log_level, log_format=config.log_format, log_file=config.log_file)

    try:
        app = create_app(ApprovalSystem(config))
        logger.info(f"Approvals API available at http://{config.api_host}:{config.api_port}")
        uvicorn.run(app, host=config.api_host, port=config.api_port, log_level=config.log_level.lower())
    except KeyboardInterrupt:
        logger.info("Shutting down approval workflow service")
    except Exception as e:
        logger.error(f"Error starting server: {e}", exc_info=True)
        sys.exit(1)
