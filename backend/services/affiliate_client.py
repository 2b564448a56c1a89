# services/affiliate_client.py
# ============================================================================
# STOREFRONT FULFILLMENT BACKEND - COMMISSION TRACKING CLIENT
# ============================================================================
# AffiliateWP REST API: affiliate lookup by username and referral creation.
# Basic auth with the public key / token pair.
# ============================================================================

from typing import Optional

import httpx
from pydantic import BaseModel

from config import AffiliateConfig
from pipeline.errors import IntegrationError
from services.http_client import IntegrationClient


class Affiliate(BaseModel):
    affiliate_id: int
    username: Optional[str] = None
    status: str = "inactive"

    @property
    def is_active(self) -> bool:
        return self.status == "active"


class Referral(BaseModel):
    referral_id: Optional[int] = None
    affiliate_id: int
    amount: float
    reference: str
    status: str = "unpaid"


class AffiliateClient(IntegrationClient):
    """Thin async client over the commission-tracking API"""

    name = "affiliate"

    def __init__(
        self,
        config: Optional[AffiliateConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config or AffiliateConfig.from_env()
        super().__init__(timeout_seconds=self.config.timeout_seconds, transport=transport)

    def _auth(self) -> httpx.BasicAuth:
        return httpx.BasicAuth(self.config.public_key, self.config.token)

    def _ensure_configured(self):
        if not self.config.configured:
            raise IntegrationError("Commission tracking API not configured", integration=self.name)

    async def lookup_affiliate_by_username(self, username: str) -> Optional[Affiliate]:
        """None when no affiliate carries this username."""
        self._ensure_configured()
        try:
            response = await self._request(
                "GET",
                f"{self.config.api_url}/wp-json/affwp/v1/affiliates/search",
                params={"username": username},
                auth=self._auth(),
            )
        except IntegrationError as e:
            if e.status == 404:
                return None
            raise

        data = self._json(response)
        if not isinstance(data, dict) or not data.get("affiliate_id"):
            return None

        return Affiliate(
            affiliate_id=int(data["affiliate_id"]),
            username=data.get("username") or data.get("user_nicename") or username,
            status=data.get("status") or "inactive",
        )

    async def record_referral(
        self,
        affiliate_id: int,
        amount: float,
        description: str,
        reference: str,
        context: str = "storefront",
        custom: Optional[dict] = None,
    ) -> Referral:
        self._ensure_configured()
        response = await self._request(
            "POST",
            f"{self.config.api_url}/wp-json/affwp/v1/referrals",
            json={
                "affiliate_id": affiliate_id,
                "amount": amount,
                "description": description,
                "reference": reference,
                "status": "unpaid",
                "context": context,
                "custom": custom,
            },
            auth=self._auth(),
        )
        data = self._json(response) or {}
        self._logger.info(
            "referral_recorded",
            affiliate_id=affiliate_id,
            reference=reference,
            referral_id=data.get("referral_id"),
        )
        return Referral(
            referral_id=data.get("referral_id"),
            affiliate_id=affiliate_id,
            amount=amount,
            reference=reference,
            status=data.get("status") or "unpaid",
        )
