"""
Configuration and environment handling for the Allstar agent.
"""
import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

# Load environment variables
load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class OpenAIConfig(BaseModel):
    """OpenAI API configuration."""
    api_key: str = Field(default_factory=lambda: os.getenv("OPENAI_API_KEY", ""))
    model: str = Field(default_factory=lambda: os.getenv("OPENAI_MODEL", "gpt-4o"))
    max_tokens: int = Field(default=512)
    temperature: float = Field(default=0.2)


class MySQLConfig(BaseModel):
    """MySQL database configuration."""
    host: str = Field(default_factory=lambda: os.getenv("MYSQL_HOST", "localhost"))
    port: int = Field(default_factory=lambda: int(os.getenv("MYSQL_PORT", "3306")))
    user: str = Field(default_factory=lambda: os.getenv("MYSQL_USER", "root"))
    password: str = Field(default_factory=lambda: os.getenv("MYSQL_PASSWORD", ""))
    database: str = Field(default_factory=lambda: os.getenv("MYSQL_DATABASE", "allstar_agent"))

    def connection_kwargs(self) -> dict:
        return {
            "host": self.host,
            "port": self.port,
            "user": self.user,
            "password": self.password,
            "database": self.database,
        }


class EbayConfig(BaseModel):
    """eBay Browse API credentials."""
    app_id: str = Field(default_factory=lambda: os.getenv("EBAY_APP_ID", ""))
    cert_id: str = Field(default_factory=lambda: os.getenv("EBAY_CERT_ID", ""))
    marketplace_id: str = Field(default="EBAY_US")
    timeout_seconds: float = Field(default=30.0)

    @property
    def is_sandbox(self) -> bool:
        return "SBX" in self.app_id


class CraigslistConfig(BaseModel):
    """Craigslist search area."""
    enabled: bool = Field(default_factory=lambda: _env_bool("CRAIGSLIST_ENABLED", "true"))
    city: str = Field(default_factory=lambda: os.getenv("CRAIGSLIST_CITY", "denver"))
    lat: float = Field(default=39.6654)
    lon: float = Field(default=-105.1062)
    search_distance: int = Field(default=1000)
    timeout_seconds: float = Field(default=30.0)


class PipelineConfig(BaseModel):
    """Pipeline processing configuration."""
    search_query: str = Field(default_factory=lambda: os.getenv("SEARCH_QUERY", "headlight"))
    batch_size: int = Field(default=10, ge=1, description="Listings per grading batch")
    concurrency: int = Field(default=3, ge=1, description="Parallel model calls per window")
    disagreement_limit: int = Field(default=20, ge=0, description="Disagreement exemplars in the prompt")
    agreement_limit: int = Field(default=5, ge=0, description="Agreement exemplars in the prompt")


class ServerConfig(BaseModel):
    """HTTP administration surface."""
    host: str = Field(default="0.0.0.0")
    port: int = Field(default_factory=lambda: int(os.getenv("PORT", "3000")))
    api_token: str = Field(default_factory=lambda: os.getenv("AGENT_API_TOKEN", ""))
    log_level: str = Field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))


class Config(BaseModel):
    """Main configuration."""
    openai: OpenAIConfig = Field(default_factory=OpenAIConfig)
    mysql: MySQLConfig = Field(default_factory=MySQLConfig)
    ebay: EbayConfig = Field(default_factory=EbayConfig)
    craigslist: CraigslistConfig = Field(default_factory=CraigslistConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)


# Singleton config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get or create the singleton config instance."""
    global _config
    if _config is None:
        _config = Config()
    return _config


def reset_config() -> None:
    """Drop the cached config so the next get_config() re-reads the environment."""
    global _config
    _config = None
