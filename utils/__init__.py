"""Utility modules for cross-cutting concerns."""

from utils.timezone import now_utc, to_utc
from utils.client_ip import get_client_ip
