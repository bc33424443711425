#!/usr/bin/env python3
"""
Deal Escrow Bot entry point
Configures logging, checks configuration and serves the API with uvicorn
"""
import logging
import sys

import uvicorn

from config import Config

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler(sys.stdout)]
)

# Suppress bot token in logs
logging.getLogger('httpx').setLevel(logging.WARNING)
logging.getLogger('telegram.request').setLevel(logging.WARNING)
logging.getLogger('apscheduler.executors.default').setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


def main():
    Config.log_environment_config()
    problems = Config.validate()
    for problem in problems:
        logger.error(f"❌ CONFIG_INVALID: {problem}")
    if problems and Config.IS_PRODUCTION:
        sys.exit(1)

    from webhook_server import create_app

    logger.info(f"🚀 Starting Deal Escrow Bot on port {Config.PORT}")
    uvicorn.run(create_app(), host="0.0.0.0", port=Config.PORT, log_level="info")


if __name__ == "__main__":
    main()
