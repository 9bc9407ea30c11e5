"""Application configuration loaded from environment variables and .env file."""

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings.

    Values are loaded from environment variables first,
    then from a .env file in the project root as fallback.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
    )

    DATABASE_URL: str = "sqlite:///./dev.db"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Solana RPC
    SOLANA_RPC_URL: str = "https://api.devnet.solana.com"
    SOLANA_NETWORK: str = "devnet"
    RPC_TIMEOUT_SECONDS: float = 15.0
    RPC_MAX_ATTEMPTS: int = 2

    # Update authority held by the service (base58 secret key)
    AUTHORITY_PRIVATE_KEY: Optional[str] = None
    COLLECTION_ADDRESS: Optional[str] = None

    # Storage network
    STORAGE_NODE_URL: Optional[str] = None
    STORAGE_UPLOADER_URL: Optional[str] = None
    METADATA_SIZE_ESTIMATE: int = 5000
    RENT_MARGIN_LAMPORTS: int = 10_000_000
    MIN_FUNDED_LAMPORTS: int = 5_000_000
    FUNDING_RECHECK_DELAY_SECONDS: float = 2.0

    # Transaction explanation provider
    EXPLAINER_PROVIDER: str = "helius"
    HELIUS_API_KEY: Optional[str] = None
    HELIUS_EXPLAINER_URL: str = (
        "https://orb-api.helius-rpc.com/api/ai-transaction-explainer"
    )
    AI_API_KEY: Optional[str] = None
    AI_MODEL: Optional[str] = None

    # Experience window
    RECENT_SIGNATURE_LIMIT: int = 20
    XP_WINDOW_HOURS: int = 24
    CLASSIFY_BATCH_SIZE: int = 3
    CLASSIFY_BATCH_DELAY_SECONDS: float = 0.5

    GAME_CONFIG_PATH: str = "src/data/game_config.json"

    @property
    def is_devnet(self) -> bool:
        return self.SOLANA_NETWORK == "devnet" or "devnet" in self.SOLANA_RPC_URL

    @property
    def storage_node_url(self) -> str:
        if self.STORAGE_NODE_URL:
            return self.STORAGE_NODE_URL.rstrip("/")
        return "https://devnet.irys.xyz" if self.is_devnet else "https://node1.irys.xyz"

    @property
    def storage_gateway_url(self) -> str:
        """Gateway that serves uploaded documents for the current network."""
        return "https://devnet.irys.xyz" if self.is_devnet else "https://arweave.net"


settings = Settings()
