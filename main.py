#!/usr/bin/env python3
"""
============================================================================
Agent Session Orchestrator
Process Entry Point
============================================================================

Reliability Level: L6 Critical

Serves app.main:app with uvicorn on PORT (default 3000). Configuration
is validated before the server binds, so a production deployment missing
a service URL exits non-zero instead of serving requests.

USAGE:
    python main.py

============================================================================
"""

import logging
import sys

import uvicorn
from dotenv import load_dotenv

from services.orchestrator_config import OrchestratorConfigurationError, get_orchestrator_config

# Load environment variables first
load_dotenv()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s | %(levelname)s | %(name)s | %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger("SESSION-ORCHESTRATOR")


def main() -> int:
    try:
        config = get_orchestrator_config()
    except OrchestratorConfigurationError as e:
        logger.critical(f"[{e.error_code}] Refusing to start: {e.message}")
        return 1

    logger.info(
        f"[SESSION-ORCHESTRATOR] Starting | env={config.app_env} | port={config.port}"
    )
    uvicorn.run("app.main:app", host="0.0.0.0", port=config.port, log_level="info")
    return 0


if __name__ == "__main__":
    sys.exit(main())
