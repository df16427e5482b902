# Infrastructure clients
from clients.vault_client import (
    VaultClient,
    VaultError,
    get_database_url,
    get_valkey_url,
    get_email_config,
    get_jwt_keys,
    get_csrf_secret,
)
from clients.postgres_client import PostgresClient
from clients.valkey_client import (
    ValkeyClient,
    RetryPolicy,
    ValkeySupervisor,
    ConnectionState,
    connect_with_backoff,
)
from clients.email_client import EmailGatewayClient, EmailGatewayError
