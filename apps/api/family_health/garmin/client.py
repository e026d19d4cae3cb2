"""Garmin Connect client: OAuth 1.0a handshake and Wellness API reads."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx
from oauthlib.oauth1 import SIGNATURE_HMAC_SHA1, Client as OAuth1Client
from pydantic import BaseModel, ConfigDict, Field

from ..config import get_config

logger = logging.getLogger(__name__)

REQUEST_TOKEN_URL = "https://connectapi.garmin.com/oauth-service/oauth/request_token"
AUTHORIZE_URL = "https://connect.garmin.com/oauthConfirm"
ACCESS_TOKEN_URL = "https://connectapi.garmin.com/oauth-service/oauth/access_token"
API_BASE = "https://apis.garmin.com/wellness-api/rest"


class GarminAPIError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass
class GarminTokens:
    access_token: str
    access_token_secret: str


@dataclass
class GarminRequestToken:
    oauth_token: str
    oauth_token_secret: str
    authorize_url: str


class GarminDailySummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    summary_id: str = Field(alias="summaryId")
    calendar_date: str = Field(alias="calendarDate")
    steps: int = 0
    distance_in_meters: float = Field(default=0, alias="distanceInMeters")
    active_kilocalories: float = Field(default=0, alias="activeKilocalories")
    resting_heart_rate: int = Field(default=0, alias="restingHeartRateInBeatsPerMinute")
    average_heart_rate: int = Field(default=0, alias="averageHeartRateInBeatsPerMinute")
    max_heart_rate: int = Field(default=0, alias="maxHeartRateInBeatsPerMinute")
    average_stress_level: int = Field(default=0, alias="averageStressLevel")


class GarminSleepSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    summary_id: str = Field(alias="summaryId")
    calendar_date: str = Field(alias="calendarDate")
    duration_in_seconds: int = Field(default=0, alias="durationInSeconds")
    deep_sleep_seconds: int = Field(default=0, alias="deepSleepDurationInSeconds")
    light_sleep_seconds: int = Field(default=0, alias="lightSleepDurationInSeconds")
    rem_sleep_seconds: int = Field(default=0, alias="remSleepInSeconds")
    awake_seconds: int = Field(default=0, alias="awakeDurationInSeconds")


def _epoch(value: datetime) -> int:
    return int(value.timestamp())


class GarminClient:
    """Signs each request with HMAC-SHA1 and sends it with httpx.

    ``transport`` is forwarded to ``httpx.AsyncClient`` so callers can swap
    in a mock transport.
    """

    def __init__(
        self,
        consumer_key: str,
        consumer_secret: str,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 15.0,
    ) -> None:
        self.consumer_key = consumer_key
        self.consumer_secret = consumer_secret
        self._transport = transport
        self._timeout = timeout

    def _signer(
        self,
        token: Optional[str] = None,
        token_secret: Optional[str] = None,
        *,
        callback_uri: Optional[str] = None,
        verifier: Optional[str] = None,
    ) -> OAuth1Client:
        return OAuth1Client(
            self.consumer_key,
            client_secret=self.consumer_secret,
            resource_owner_key=token,
            resource_owner_secret=token_secret,
            callback_uri=callback_uri,
            verifier=verifier,
            signature_method=SIGNATURE_HMAC_SHA1,
        )

    async def _send(self, signer: OAuth1Client, method: str, url: str) -> httpx.Response:
        signed_url, headers, _ = signer.sign(url, http_method=method)
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            try:
                resp = await client.request(method, signed_url, headers=headers)
            except httpx.HTTPError as exc:
                raise GarminAPIError(f"Garmin request failed: {exc}") from exc
        if resp.status_code >= 400:
            logger.warning(
                "garmin request failed",
                extra={"method": method, "url": url, "status": resp.status_code},
            )
            raise GarminAPIError(
                f"Garmin API error: {resp.status_code} {resp.reason_phrase}",
                status_code=resp.status_code,
            )
        return resp

    @staticmethod
    def _parse_token_response(resp: httpx.Response) -> tuple[str, str]:
        params = httpx.QueryParams(resp.text)
        token = params.get("oauth_token")
        secret = params.get("oauth_token_secret")
        if not token or not secret:
            raise GarminAPIError("Invalid token response from Garmin")
        return token, secret

    async def get_request_token(self, callback_url: str) -> GarminRequestToken:
        signer = self._signer(callback_uri=callback_url)
        resp = await self._send(signer, "POST", REQUEST_TOKEN_URL)
        token, secret = self._parse_token_response(resp)
        authorize_url = f"{AUTHORIZE_URL}?{httpx.QueryParams({'oauth_token': token})}"
        return GarminRequestToken(oauth_token=token, oauth_token_secret=secret, authorize_url=authorize_url)

    async def get_access_token(
        self,
        request_token: str,
        request_token_secret: str,
        verifier: str,
    ) -> GarminTokens:
        signer = self._signer(request_token, request_token_secret, verifier=verifier)
        resp = await self._send(signer, "POST", ACCESS_TOKEN_URL)
        token, secret = self._parse_token_response(resp)
        return GarminTokens(access_token=token, access_token_secret=secret)

    async def _get_summaries(
        self,
        path: str,
        tokens: GarminTokens,
        start: datetime,
        end: datetime,
    ) -> List[Dict[str, Any]]:
        query = httpx.QueryParams(
            {"uploadStartTimeInSeconds": _epoch(start), "uploadEndTimeInSeconds": _epoch(end)}
        )
        signer = self._signer(tokens.access_token, tokens.access_token_secret)
        resp = await self._send(signer, "GET", f"{API_BASE}/{path}?{query}")
        data = resp.json() if resp.content else []
        if not isinstance(data, list):
            raise GarminAPIError(f"Unexpected {path} payload from Garmin")
        return data

    async def get_daily_summaries(
        self,
        tokens: GarminTokens,
        start: datetime,
        end: datetime,
    ) -> List[GarminDailySummary]:
        rows = await self._get_summaries("dailies", tokens, start, end)
        return [GarminDailySummary.model_validate(row) for row in rows]

    async def get_sleep_data(
        self,
        tokens: GarminTokens,
        start: datetime,
        end: datetime,
    ) -> List[GarminSleepSummary]:
        rows = await self._get_summaries("sleeps", tokens, start, end)
        return [GarminSleepSummary.model_validate(row) for row in rows]

    async def deregister_user(self, tokens: GarminTokens) -> None:
        signer = self._signer(tokens.access_token, tokens.access_token_secret)
        await self._send(signer, "DELETE", f"{API_BASE}/user/registration")


def get_garmin_client() -> GarminClient:
    config = get_config()
    if not config.garmin_consumer_key or not config.garmin_consumer_secret:
        raise RuntimeError("Missing GARMIN_CONSUMER_KEY/GARMIN_CONSUMER_SECRET.")
    return GarminClient(config.garmin_consumer_key, config.garmin_consumer_secret)
