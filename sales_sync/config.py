"""
Configuration module for the sales sync engine.

Reads environment variables and provides configuration values for the
store connection, per-channel long-lived secrets, query windows and the
trigger secret used by the scheduled credential refresh.
"""

import json
import os
from pathlib import Path
from typing import Any, Dict

from dotenv import load_dotenv

from sales_sync.errors import ConfigurationMissing


def _is_running_on_aws() -> bool:
    """Detect the Lambda/ECS runtime, where configuration comes from the task definition."""
    return any(
        os.getenv(indicator)
        for indicator in (
            "AWS_EXECUTION_ENV",
            "AWS_LAMBDA_FUNCTION_NAME",
            "ECS_CONTAINER_METADATA_URI",
        )
    )


# Local development reads a .env at the repository root; existing variables win
env_path = Path(__file__).parent.parent / ".env"
if not _is_running_on_aws() and env_path.exists():
    load_dotenv(dotenv_path=env_path, override=False)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


def _env_int(name: str, default: int) -> int:
    return int(_env_float(name, default))


class Config:
    """
    Configuration class that reads environment variables for the sync engine.
    """

    # Store configuration
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")
    DB_SECRET_ARN: str = os.getenv("DB_SECRET_ARN", "")
    AWS_REGION: str = os.getenv("AWS_DEFAULT_REGION", "us-east-1")

    # Shiprocket (carrier)
    SHIPROCKET_API_URL: str = os.getenv("SHIPROCKET_API_URL", "https://apiv2.shiprocket.in")
    SHIPROCKET_EMAIL: str = os.getenv("SHIPROCKET_EMAIL", "")
    SHIPROCKET_PASSWORD: str = os.getenv("SHIPROCKET_PASSWORD", "")
    SHIPROCKET_LOOKBACK_DAYS: int = _env_int("SHIPROCKET_LOOKBACK_DAYS", 25)
    SHIPROCKET_PAGE_DELAY_SECONDS: float = _env_float("SHIPROCKET_PAGE_DELAY_SECONDS", 0.5)
    # "unit" keeps the literal mrp - discount figure; "line" multiplies by quantity
    SHIPROCKET_ITEM_PRICE_BASIS: str = os.getenv("SHIPROCKET_ITEM_PRICE_BASIS", "unit").lower()

    # Flipkart (marketplace B)
    FLIPKART_API_URL: str = os.getenv("FLIPKART_API_URL", "https://api.flipkart.net")
    FLIPKART_APP_ID: str = os.getenv("FLIPKART_APP_ID", "")
    FLIPKART_APP_SECRET: str = os.getenv("FLIPKART_APP_SECRET", "")
    FLIPKART_PAGE_DELAY_SECONDS: float = _env_float("FLIPKART_PAGE_DELAY_SECONDS", 0.5)
    FLIPKART_CANCELLATION_LOOKBACK_DAYS: int = _env_int("FLIPKART_CANCELLATION_LOOKBACK_DAYS", 14)
    GEO_ENRICH_FUNCTION_NAME: str = os.getenv("GEO_ENRICH_FUNCTION_NAME", "")

    # Amazon SP-API (marketplace A)
    AMAZON_API_URL: str = os.getenv("AMAZON_API_URL", "https://sellingpartnerapi-fe.amazon.com")
    AMAZON_AUTH_URL: str = os.getenv("AMAZON_AUTH_URL", "https://api.amazon.com/auth/o2/token")
    AMAZON_CLIENT_ID: str = os.getenv("AMAZON_CLIENT_ID", "")
    AMAZON_CLIENT_SECRET: str = os.getenv("AMAZON_CLIENT_SECRET", "")
    AMAZON_REFRESH_TOKEN: str = os.getenv("AMAZON_REFRESH_TOKEN", "")
    AMAZON_MARKETPLACE_ID: str = os.getenv("AMAZON_MARKETPLACE_ID", "A21TJRUUN4KGV")
    AMAZON_LOOKBACK_DAYS: int = _env_int("AMAZON_LOOKBACK_DAYS", 30)
    AMAZON_PAGE_DELAY_SECONDS: float = _env_float("AMAZON_PAGE_DELAY_SECONDS", 0.0)

    # Net-of-tax divisor for marketplace revenue (flat GST approximation)
    MARKETPLACE_TAX_DIVISOR: float = _env_float("MARKETPLACE_TAX_DIVISOR", 1.18)

    # Scheduled credential refresh
    CRON_SECRET: str = os.getenv("CRON_SECRET", "")
    CREDENTIAL_REFRESH_MARGIN_HOURS: float = _env_float("CREDENTIAL_REFRESH_MARGIN_HOURS", 24)

    # 0 disables the per-channel run lease
    SYNC_LEASE_TTL_SECONDS: int = _env_int("SYNC_LEASE_TTL_SECONDS", 0)

    HTTP_TIMEOUT_SECONDS: float = _env_float("HTTP_TIMEOUT_SECONDS", 60)

    # Long-lived secrets each trigger needs before it may touch the network
    CHANNEL_SECRETS: Dict[str, tuple] = {
        "shiprocket": ("SHIPROCKET_EMAIL", "SHIPROCKET_PASSWORD"),
        "flipkart": ("FLIPKART_APP_ID", "FLIPKART_APP_SECRET"),
        "amazon": ("AMAZON_CLIENT_ID", "AMAZON_CLIENT_SECRET", "AMAZON_REFRESH_TOKEN"),
        "vyapar": (),
    }

    # Lazy-loaded secrets cache
    _db_secret_cache: Dict[str, Any] = {}

    @classmethod
    def require(cls, *names: str) -> None:
        """
        Ensure the named settings are present.

        Args:
            *names: Attribute names on Config (which match the environment variable names)

        Raises:
            ConfigurationMissing: Listing every missing name
        """
        missing = [name for name in names if not getattr(cls, name, "")]
        if missing:
            raise ConfigurationMissing(missing)

    @classmethod
    def require_channel(cls, channel: str) -> None:
        """Validate the store settings plus the long-lived secrets of one channel."""
        cls.validate()
        cls.require(*cls.CHANNEL_SECRETS.get(channel, ()))

    @classmethod
    def validate(cls) -> None:
        """
        Validate that the store connection and tunables are usable.

        Raises:
            ConfigurationMissing: If no store connection is configured
            ValueError: If a tunable holds an unsupported value
        """
        if not cls.DATABASE_URL and not cls.DB_SECRET_ARN:
            raise ConfigurationMissing(["DATABASE_URL or DB_SECRET_ARN"])

        if cls.SHIPROCKET_ITEM_PRICE_BASIS not in ("unit", "line"):
            raise ValueError("SHIPROCKET_ITEM_PRICE_BASIS must be either 'unit' or 'line'")

        if cls.MARKETPLACE_TAX_DIVISOR <= 0:
            raise ValueError("MARKETPLACE_TAX_DIVISOR must be greater than zero")

    @classmethod
    def _load_db_secret(cls) -> Dict[str, Any]:
        """
        Retrieve and cache the database secret from AWS Secrets Manager.

        Returns:
            Dict containing the secret payload.
        """
        if not cls._db_secret_cache:
            import boto3

            secrets_client = boto3.client("secretsmanager", region_name=cls.AWS_REGION)
            try:
                response = secrets_client.get_secret_value(SecretId=cls.DB_SECRET_ARN)
                cls._db_secret_cache = json.loads(response["SecretString"])
            except Exception as e:
                raise ValueError(f"Failed to retrieve database secret from Secrets Manager: {e}")
        return cls._db_secret_cache

    @classmethod
    def get_db_connection_details(cls) -> Dict[str, Any]:
        """
        Provide psycopg2 connection keyword arguments.

        DATABASE_URL wins when set; otherwise the Secrets Manager secret must
        hold host, port, username, password and dbname (or database).

        Returns:
            Dict of keyword arguments for psycopg2.connect
        """
        if cls.DATABASE_URL:
            return {"dsn": cls.DATABASE_URL}

        if not cls.DB_SECRET_ARN:
            raise ConfigurationMissing(["DATABASE_URL or DB_SECRET_ARN"])

        secret = cls._load_db_secret()

        required_keys = ["host", "port", "username", "password"]
        missing_keys = [key for key in required_keys if key not in secret]
        if missing_keys:
            raise ValueError(f"Database secret missing required keys: {', '.join(missing_keys)}")

        database_name = secret.get("dbname") or secret.get("database")
        if not database_name:
            raise ValueError("Database secret must include either 'dbname' or 'database'")

        return {
            "host": secret["host"],
            "port": int(secret["port"]),
            "dbname": database_name,
            "user": secret["username"],
            "password": secret["password"],
        }
