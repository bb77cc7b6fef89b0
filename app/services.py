import httpx
import logging
import os
from decimal import Decimal
from app.results import PreAuthResponse

PAYMENT_SERVICE_URL = os.getenv("PAYMENT_SERVICE_URL", "http://localhost:8001")
PAYMENT_TIMEOUT_SECONDS = float(os.getenv("PAYMENT_TIMEOUT_SECONDS", "10"))


class PaymentAuthorizer:
    def __init__(self, base_url: str = PAYMENT_SERVICE_URL, transport=None):
        self.base_url = base_url
        self.transport = transport

    async def preauthorize(self, card_token: str, amount: Decimal, simulate_insufficient_funds: bool = False):
        if simulate_insufficient_funds:
            logging.info("Simulating insufficient funds, declining pre-authorization")
            return PreAuthResponse(approved=False, reason="Insufficient funds")

        url = f"{self.base_url}/ps/api/v1/preauthorizations/"
        async with httpx.AsyncClient(transport=self.transport, timeout=PAYMENT_TIMEOUT_SECONDS) as client:
            response = await client.post(url, json={"card_token": card_token, "amount": str(amount)})

        if response.status_code == 402:
            data = response.json()
            return PreAuthResponse(approved=False, reason=data.get("reason") or data.get("message"))
        response.raise_for_status()

        data = response.json()
        approved = data.get("status") == "approved"
        if not approved:
            logging.warning(f"Pre-authorization declined: {data.get('reason')}")
        return PreAuthResponse(approved=approved, reason=data.get("reason"))
