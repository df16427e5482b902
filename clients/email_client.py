"""
Email gateway client for account verification mail.

The gateway renders and delivers the message; this client only posts a
compact JSON payload signed with HMAC-SHA256 (X-Signature) alongside the
service API key (X-API-Key).
"""

import hashlib
import hmac
import json
import logging

import requests

logger = logging.getLogger(__name__)


class EmailGatewayError(Exception):
    """The gateway did not accept a verification email."""


class EmailGatewayClient:
    """Posts signed verification-email requests to the gateway."""

    def __init__(self, gateway_url: str, api_key: str, hmac_secret: str, timeout: float = 10.0):
        """
        Initialize with gateway credentials.

        Args:
            gateway_url: Full URL to the email gateway endpoint
            api_key: API key for X-API-Key header
            hmac_secret: Secret for HMAC-SHA256 signature
            timeout: Seconds to wait for the gateway's reply

        Raises:
            ValueError: If any credential is empty
        """
        if not gateway_url:
            raise ValueError("gateway_url is required")
        if not api_key:
            raise ValueError("api_key is required")
        if not hmac_secret:
            raise ValueError("hmac_secret is required")

        self.gateway_url = gateway_url
        self.api_key = api_key
        self.hmac_secret = hmac_secret
        self.timeout = timeout

    def _sign_and_send(self, payload: dict) -> None:
        """
        POST payload to the gateway and check its reply.

        The signature covers the exact compact JSON bytes sent, so the body
        is serialized once and posted as-is. The gateway answers 200 with
        {"success": true} once the message is queued. Any other reply,
        including a transport error, is an EmailGatewayError.

        Args:
            payload: Verification request (type, email, first_name, subject, url)

        Raises:
            EmailGatewayError: Delivery was not accepted
        """
        payload_json = json.dumps(payload, separators=(",", ":"))

        signature = hmac.new(
            self.hmac_secret.encode("utf-8"),
            payload_json.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

        headers = {
            "Content-Type": "application/json",
            "X-API-Key": self.api_key,
            "X-Signature": signature,
        }

        try:
            response = requests.post(
                self.gateway_url,
                data=payload_json,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Email gateway connection failed: {e}")
            raise EmailGatewayError(f"Connection failed: {e}")

        try:
            response_data = response.json()
        except ValueError:
            logger.error(f"Email gateway returned invalid JSON: {response.text}")
            raise EmailGatewayError("Invalid response from gateway")

        if response.status_code != 200 or not response_data.get("success"):
            error_msg = response_data.get("message", "Unknown error")
            logger.error(f"Email gateway error: {error_msg}")
            raise EmailGatewayError(f"Gateway error: {error_msg}")

    def send_verification_email(self, email: str, name: str, verify_url: str) -> None:
        """
        Send the account verification email.

        Args:
            email: Recipient email address
            name: Recipient display name (first word used in the greeting)
            verify_url: Absolute link containing the plaintext verification code

        Raises:
            EmailGatewayError: On any failure
        """
        first_name = name.split(" ")[0] if name else ""
        payload = {
            "type": "verification",
            "email": email,
            "first_name": first_name,
            "subject": "Your account verification code",
            "url": verify_url,
        }
        self._sign_and_send(payload)
        logger.info(f"Verification email sent to {email}")
