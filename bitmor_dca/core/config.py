import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Optional

class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Chain / signer
    CHAIN_ID: int = 11155111
    SIGNER_PRIVATE_KEY: Optional[str] = None
    TRUSTED_SIGNER_ADDRESS: Optional[str] = None
    LEDGER_ADDRESS: str = "0x000000000000000000000000000000000000dca0"
    LEDGER_OWNER_ADDRESS: Optional[str] = None

    # Assets (fixed-point scales are independent)
    SOURCE_ASSET_ADDRESS: str = "0x1c7d4b196cb0c7b01d743fbc6116a902379c7238"  # USDC
    SOURCE_ASSET_DECIMALS: int = 6
    TARGET_ASSET_ADDRESS: str = "0xcbb7c0000ab88b473b1f5afd9ef808440eed33bf"  # cbBTC
    TARGET_ASSET_DECIMALS: int = 8

    # Penalty curve (basis points)
    PENALTY_MIN_BPS: int = 100
    PENALTY_MAX_BPS: int = 5000
    PENALTY_EXPONENT: float = 1.5

    # Ledger knobs
    DUST_THRESHOLD: int = 10_000_000  # 10 USDC
    SWAP_DEADLINE_SECONDS: int = 1800
    THRESHOLD_PROGRESS_PCT: int = 25

    # Database
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None

    # Price oracle (CoinGecko style)
    PRICE_API_URL: str = "https://api.coingecko.com/api/v3"
    PRICE_ASSET_ID: str = "bitcoin"
    PRICE_DECIMALS: int = 8
    PRICE_TIMEOUT_SECONDS: int = 10

    # Credit eligibility service
    BITMOR_API_URL: Optional[str] = None
    BITMOR_API_KEY: Optional[str] = None
    ELIGIBILITY_CACHE_SECONDS: int = 300

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
settings = Settings()


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("bitmor_dca")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [
        "SIGNER_PRIVATE_KEY",
        "TRUSTED_SIGNER_ADDRESS",
        "LEDGER_OWNER_ADDRESS",
    ]

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    if cfg.PENALTY_MIN_BPS > cfg.PENALTY_MAX_BPS or cfg.PENALTY_MAX_BPS > 10_000:
        message = "Invalid penalty configuration"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
