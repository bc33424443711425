"""Configuration management for the Deal Escrow Bot"""

import os
import logging
from typing import List

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def _int_env(env_var: str, default: int, min_val: int = 0) -> int:
    """Read an integer setting, falling back to the default on bad input"""
    raw = os.getenv(env_var)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"⚠️ CONFIG_INVALID: {env_var}={raw!r} is not an integer, using {default}")
        return default
    if value < min_val:
        logger.warning(f"⚠️ CONFIG_INVALID: {env_var}={value} below minimum {min_val}, using {default}")
        return default
    return value


class Config:
    """Application configuration"""

    ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower().strip()
    IS_PRODUCTION = ENVIRONMENT == "production"

    # Telegram bot token: TELEGRAM_BOT_TOKEN takes priority, BOT_TOKEN is the legacy fallback
    TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN")
    GENERIC_BOT_TOKEN = os.getenv("BOT_TOKEN")
    BOT_TOKEN = TELEGRAM_BOT_TOKEN or GENERIC_BOT_TOKEN

    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///deal_escrow.db")

    # Chain
    RPC_URL = os.getenv("BASE_RPC_URL", "https://mainnet.base.org")
    CHAIN_ID = _int_env("CHAIN_ID", 8453, min_val=1)
    FACTORY_ADDRESS = os.getenv("ESCROW_FACTORY_ADDRESS", "0x59239Ea02937B7575435a3fefcfd55f6F9C1c363")
    TOKEN_ADDRESS = os.getenv("USDC_ADDRESS", "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913")
    TOKEN_SYMBOL = os.getenv("TOKEN_SYMBOL", "USDC")
    TOKEN_DECIMALS = _int_env("TOKEN_DECIMALS", 6)
    ARBITRATOR_ADDRESS = os.getenv("ARBITRATOR_ADDRESS", ZERO_ADDRESS)
    EXPLORER_URL = os.getenv("BASESCAN_URL", "https://basescan.org").rstrip("/")

    # Signing dashboard that renders interaction requests
    APP_URL = os.getenv("APP_URL", "https://roninotc-app.vercel.app").rstrip("/")
    PORT = _int_env("PORT", 5123, min_val=1)

    # Timing
    POLL_INTERVAL_SECONDS = _int_env("POLL_INTERVAL_SECONDS", 10, min_val=1)
    INTERACTION_TIMEOUT_SECONDS = _int_env("INTERACTION_TIMEOUT_SECONDS", 5, min_val=1)
    RECEIPT_TIMEOUT_SECONDS = _int_env("RECEIPT_TIMEOUT_SECONDS", 120, min_val=1)
    # 0 disables expiry of unanswered signing requests
    PENDING_INTERACTION_TTL_SECONDS = _int_env("PENDING_INTERACTION_TTL_SECONDS", 3600)
    PENDING_SWEEP_INTERVAL_SECONDS = _int_env("PENDING_SWEEP_INTERVAL_SECONDS", 300, min_val=1)

    @staticmethod
    def log_environment_config():
        """Log current environment configuration for debugging"""
        logger.info(f"🔧 Deal Escrow Bot Configuration:")
        logger.info(f"   Environment: {Config.ENVIRONMENT.upper()}")
        logger.info(f"   Chain ID: {Config.CHAIN_ID} via {Config.RPC_URL}")
        logger.info(f"   🏭 Factory: {Config.FACTORY_ADDRESS}")
        logger.info(f"   🪙 Token: {Config.TOKEN_SYMBOL} {Config.TOKEN_ADDRESS} ({Config.TOKEN_DECIMALS} decimals)")
        logger.info(f"   👮 Arbitrator: {Config.ARBITRATOR_ADDRESS}")
        logger.info(f"   Poll interval: {Config.POLL_INTERVAL_SECONDS}s")
        logger.info(f"   Token Source: {'TELEGRAM_BOT_TOKEN' if Config.TELEGRAM_BOT_TOKEN else 'BOT_TOKEN (fallback)'}")
        if Config.PENDING_INTERACTION_TTL_SECONDS:
            logger.info(f"   Pending interaction TTL: {Config.PENDING_INTERACTION_TTL_SECONDS}s")
        else:
            logger.warning(f"   ⚠️ Pending interaction TTL disabled - unanswered requests are never expired")

    @staticmethod
    def validate() -> List[str]:
        """Return a list of configuration problems, empty when the config is usable"""
        problems = []
        if not Config.BOT_TOKEN:
            problems.append("TELEGRAM_BOT_TOKEN (or BOT_TOKEN) is not set")
        for name in ("FACTORY_ADDRESS", "TOKEN_ADDRESS", "ARBITRATOR_ADDRESS"):
            value = getattr(Config, name)
            if not (isinstance(value, str) and value.startswith("0x") and len(value) == 42):
                problems.append(f"{name} is not a 20-byte hex address: {value!r}")
        if Config.ARBITRATOR_ADDRESS == ZERO_ADDRESS:
            problems.append("ARBITRATOR_ADDRESS is the zero address")
        return problems
