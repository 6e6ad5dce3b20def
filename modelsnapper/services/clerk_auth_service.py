"""
Clerk identity provider integration
Verifies session tokens against the instance JWKS and reads user profiles
from the Clerk Backend API
"""
import asyncio
import json
import logging
from typing import Any, Dict, Optional

import httpx
import jwt
from jwt import PyJWKClient

from modelsnapper.core.config import settings
from modelsnapper.models.auth import Identity

logger = logging.getLogger(__name__)


class ClerkAPIError(Exception):
    pass


class ClerkAuthService:
    def __init__(self):
        self._jwks_client: Optional[PyJWKClient] = None

    def _get_jwks_client(self) -> PyJWKClient:
        if not settings.CLERK_JWKS_URL:
            raise ClerkAPIError("CLERK_JWKS_URL is not configured")
        if self._jwks_client is None or self._jwks_client.uri != settings.CLERK_JWKS_URL:
            # Key cache only; no caller identity is held here
            self._jwks_client = PyJWKClient(settings.CLERK_JWKS_URL, cache_keys=True)
        return self._jwks_client

    async def verify_session_token(self, token: str) -> Dict[str, Any]:
        """
        Verify a Clerk session JWT and return its claims.

        Raises:
            jwt.InvalidTokenError: signature, expiry or authorized party mismatch
            ClerkAPIError: JWKS unavailable
        """
        try:
            signing_key = await asyncio.to_thread(
                self._get_jwks_client().get_signing_key_from_jwt, token
            )
        except jwt.PyJWKClientError as e:
            raise ClerkAPIError(f"Unable to fetch signing key: {e}")

        claims = jwt.decode(
            token,
            signing_key.key,
            algorithms=["RS256"],
            options={"require": ["exp", "sub"]},
            leeway=5,
        )

        allowed_parties = [p.strip() for p in settings.CLERK_AUTHORIZED_PARTIES.split(",") if p.strip()]
        azp = claims.get("azp")
        if allowed_parties and azp and azp not in allowed_parties:
            raise jwt.InvalidTokenError(f"Unexpected authorized party: {azp}")

        return claims

    async def get_user(self, auth_user_id: str) -> Dict[str, Any]:
        if not settings.CLERK_SECRET_KEY:
            raise ClerkAPIError("CLERK_SECRET_KEY is not configured")

        headers = {"Authorization": f"Bearer {settings.CLERK_SECRET_KEY}"}
        try:
            async with httpx.AsyncClient(timeout=httpx.Timeout(10.0)) as client:
                response = await client.get(f"{settings.CLERK_API_URL}/users/{auth_user_id}", headers=headers)
        except httpx.TimeoutException:
            raise ClerkAPIError("Request timeout")
        except httpx.RequestError as e:
            logger.error(f"Clerk request error: {str(e)}")
            raise ClerkAPIError(f"Request error: {str(e)}")

        if response.status_code == 404:
            raise ClerkAPIError(f"User {auth_user_id} not found")
        if response.status_code != 200:
            logger.error(f"Clerk API request failed with status {response.status_code}: {response.text}")
            raise ClerkAPIError(f"API request failed: {response.status_code}")

        try:
            return response.json()
        except json.JSONDecodeError as e:
            raise ClerkAPIError(f"Invalid JSON response: {str(e)}")

    @staticmethod
    def identity_from_user(data: Dict[str, Any]) -> Identity:
        """Build an Identity with the primary email first"""
        primary_id = data.get("primary_email_address_id")
        emails = []
        for entry in data.get("email_addresses") or []:
            address = entry.get("email_address")
            if not address:
                continue
            if entry.get("id") == primary_id:
                emails.insert(0, address)
            else:
                emails.append(address)

        return Identity(
            auth_user_id=data["id"],
            email_addresses=emails,
            first_name=data.get("first_name"),
            last_name=data.get("last_name"),
            picture=data.get("image_url"),
        )

    async def authenticate(self, token: str) -> Identity:
        """Session token -> Identity. Every call hits the provider; nothing is memoized."""
        claims = await self.verify_session_token(token)
        user_data = await self.get_user(claims["sub"])
        return self.identity_from_user(user_data)


clerk_auth_service = ClerkAuthService()
