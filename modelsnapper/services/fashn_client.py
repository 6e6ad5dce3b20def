import httpx
import json
import logging
from typing import Dict, Any, Optional

from modelsnapper.core.config import settings

logger = logging.getLogger(__name__)

# Provider prediction states
SUCCESS_STATUSES = {"succeeded", "completed"}
FAILURE_STATUSES = {"failed", "canceled"}


class FashnAPIError(Exception):
    pass


class FashnClient:
    """Virtual try-on client for the FASHN API. Single attempt per call, no retries."""

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None):
        self.api_key = api_key if api_key is not None else settings.FASHN_API_KEY
        self.base_url = (base_url or settings.FASHN_BASE_URL).rstrip("/")
        self.session: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        self.session = httpx.AsyncClient(timeout=httpx.Timeout(settings.FASHN_TIMEOUT_SECONDS))
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self.session:
            await self.session.aclose()
            self.session = None

    async def _make_request(self, method: str, endpoint: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if not self.session:
            raise FashnAPIError("Client session not initialized")
        if not self.api_key:
            raise FashnAPIError("FASHN_API_KEY is not configured")

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json"
        }

        try:
            response = await self.session.request(method, f"{self.base_url}{endpoint}", json=payload, headers=headers)
        except httpx.TimeoutException:
            raise FashnAPIError("Request timeout")
        except httpx.RequestError as e:
            logger.error(f"HTTP request error: {str(e)}")
            raise FashnAPIError(f"Request error: {str(e)}")

        if response.status_code == 401:
            raise FashnAPIError("Authentication failed - check FASHN_API_KEY")
        elif response.status_code == 429:
            raise FashnAPIError("Rate limit exceeded")
        elif response.status_code >= 400:
            logger.error(f"FASHN request {endpoint} failed with status {response.status_code}: {response.text}")
            raise FashnAPIError(f"API request failed: {response.status_code}")

        try:
            data = response.json()
        except json.JSONDecodeError as e:
            raise FashnAPIError(f"Invalid JSON response: {str(e)}")
        if not isinstance(data, dict):
            raise FashnAPIError(f"Unexpected response body: {type(data).__name__}")
        return data

    async def submit_tryon(self, garment_image: str, model_image: str, category: str = "auto") -> str:
        """Start a try-on prediction and return its id"""
        payload = {
            "model_name": settings.FASHN_MODEL_NAME,
            "inputs": {
                "model_image": model_image,
                "garment_image": garment_image,
                "category": category,
                "mode": "balanced",
                "output_format": "png",
            },
        }
        data = await self._make_request("POST", "/v1/run", payload)
        error = data.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else None
            raise FashnAPIError(message or str(error))
        if not data.get("id"):
            raise FashnAPIError("No prediction id returned")
        logger.info(f"Submitted FASHN prediction {data['id']}")
        return str(data["id"])

    async def get_status(self, prediction_id: str) -> Dict[str, Any]:
        """Returns {"id", "status", "output", "error"} as reported by the provider"""
        return await self._make_request("GET", f"/v1/status/{prediction_id}")


def get_generation_client() -> FashnClient:
    """FastAPI dependency; overridden in tests"""
    return FashnClient()
