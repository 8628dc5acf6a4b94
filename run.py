#!/usr/bin/env python3
"""
Employee Loan Ledger Entry Point

Starts the FastAPI server with host, port and logging taken from the
LOAN_LEDGER_* environment.
"""

import sys

from loan_ledger.api import run_server
from loan_ledger.config import get_config
from loan_ledger.logging_config import setup_logging


if __name__ == "__main__":
    config = get_config()
    logger = setup_logging(config.log_level, log_format=config.log_format, log_file=config.log_file)
    logger.info("Starting employee loan ledger on %s:%d (%s storage)",
                config.api_host, config.api_port, config.storage_backend)

    try:
        run_server(host=config.api_host, port=config.api_port)
    except KeyboardInterrupt:
        logger.info("Shutting down employee loan ledger")
    except Exception as e:
        logger.error("Error starting server: %s", e)
        sys.exit(1)
