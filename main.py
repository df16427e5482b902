"""Process entry point: Vault-backed wiring and uvicorn."""

import logging
import os

import uvicorn

from api.app import create_app
from auth.config import AuthConfig, TokenKeys
from auth.database import ApiKeyDatabase, AuthDatabase
from auth.security_logger import SecurityLogger
from clients.email_client import EmailGatewayClient
from clients.postgres_client import PostgresClient
from clients.valkey_client import ValkeySupervisor, connect_with_backoff
from clients.vault_client import (
    get_csrf_secret,
    get_database_url,
    get_email_config,
    get_jwt_keys,
    get_valkey_url,
)

logger = logging.getLogger(__name__)


def build_app():
    """Build the app from Vault secrets and environment settings."""
    config = AuthConfig(
        origin=os.getenv("APP_ORIGIN", "http://localhost:3000"),
        environment=os.getenv("APP_ENV", "development"),
    )

    postgres = PostgresClient(
        get_database_url(),
        min_connections=int(os.getenv("DB_POOL_MIN", "2")),
        max_connections=int(os.getenv("DB_POOL_MAX", "20")),
    )
    valkey = connect_with_backoff(get_valkey_url())
    email_config = get_email_config()

    return create_app(
        config=config,
        valkey=valkey,
        auth_db=AuthDatabase(postgres),
        api_key_db=ApiKeyDatabase(postgres),
        email_client=EmailGatewayClient(**email_config),
        security_logger=SecurityLogger(postgres),
        token_keys=TokenKeys(**get_jwt_keys()),
        csrf_secret=get_csrf_secret(),
        supervisor=ValkeySupervisor(valkey),
    )


def main() -> None:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        build_app(),
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
    )


if __name__ == "__main__":
    main()
