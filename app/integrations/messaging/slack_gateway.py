import logging

import httpx

from app.core.config import Settings, settings as default_settings
from app.integrations.messaging.base_gateway import (
    GatewayAPIError,
    GatewayConfigurationError,
    GatewayRateLimitedError,
    GatewayTransportError,
    MessagingGateway,
    RefreshedToken,
)

logger = logging.getLogger(__name__)

SLACK_DEFAULT_TOKEN_TTL_SECONDS = 43200
SLACK_CHANNEL_PAGE_SIZE = 200
SLACK_MAX_CHANNEL_PAGES = 50


class SlackGateway(MessagingGateway):
    def __init__(
        self,
        *,
        client_id: str | None,
        client_secret: str | None,
        base_url: str = "https://slack.com/api",
        timeout_seconds: float = 20.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport)

    async def _call(
        self,
        api_method: str,
        *,
        http_method: str = "POST",
        token: str | None = None,
        json: dict | None = None,
        data: dict | None = None,
        params: dict | None = None,
    ) -> dict:
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        url = f"{self.base_url}/{api_method}"
        try:
            async with self._client() as client:
                response = await client.request(
                    http_method,
                    url,
                    headers=headers,
                    json=json,
                    data=data,
                    params=params,
                )
        except httpx.HTTPError as exc:
            raise GatewayTransportError(f"Slack {api_method} transport failure: {exc}") from exc

        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After", "")
            raise GatewayRateLimitedError(
                f"Slack {api_method} rate limited",
                retry_after_seconds=int(retry_after) if retry_after.isdigit() else None,
            )
        if response.status_code >= 400:
            raise GatewayAPIError(
                f"Slack {api_method} failed: {response.status_code}",
                error_code=f"http_{response.status_code}",
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise GatewayAPIError(f"Slack {api_method} returned a non-JSON body", error_code="invalid_response") from exc
        if not isinstance(payload, dict):
            raise GatewayAPIError(f"Slack {api_method} returned an unexpected body", error_code="invalid_response")
        if payload.get("ok") is not True:
            error_code = str(payload.get("error") or "unknown_error")
            raise GatewayAPIError(f"Slack {api_method} error: {error_code}", error_code=error_code)
        return payload

    async def post_message(self, *, token: str, channel_id: str, text: str, as_user: bool = False) -> dict:
        payload = await self._call(
            "chat.postMessage",
            token=token,
            json={"channel": channel_id, "text": text, "as_user": as_user},
        )
        return {
            "channel": payload.get("channel") or channel_id,
            "ts": payload.get("ts"),
        }

    async def refresh_token(self, refresh_token: str) -> RefreshedToken:
        if not self.client_id or not self.client_secret:
            raise GatewayConfigurationError("Slack OAuth client configuration is missing")
        if not refresh_token:
            raise GatewayAPIError("Slack refresh token is empty", error_code="invalid_refresh_token")

        payload = await self._call(
            "oauth.v2.access",
            data={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
            },
        )
        access_token = str(payload.get("access_token") or "")
        if not access_token:
            raise GatewayAPIError("Slack token refresh response missing access_token", error_code="invalid_response")
        try:
            expires_in = int(payload.get("expires_in") or SLACK_DEFAULT_TOKEN_TTL_SECONDS)
        except (TypeError, ValueError) as exc:
            raise GatewayAPIError("Slack token refresh returned invalid expires_in", error_code="invalid_response") from exc
        return RefreshedToken(
            access_token=access_token,
            refresh_token=(str(payload["refresh_token"]) if payload.get("refresh_token") else None),
            expires_in=max(1, expires_in),
        )

    async def list_channels(self, *, token: str) -> list[dict]:
        channels: list[dict] = []
        cursor = ""
        for _ in range(SLACK_MAX_CHANNEL_PAGES):
            params = {
                "types": "public_channel",
                "exclude_archived": "true",
                "limit": str(SLACK_CHANNEL_PAGE_SIZE),
            }
            if cursor:
                params["cursor"] = cursor
            payload = await self._call("conversations.list", http_method="GET", token=token, params=params)
            channels.extend(item for item in payload.get("channels") or [] if item.get("is_member") is True)
            cursor = str((payload.get("response_metadata") or {}).get("next_cursor") or "")
            if not cursor:
                break
        else:
            logger.warning("slack_channel_listing_truncated pages=%s", SLACK_MAX_CHANNEL_PAGES)
        return channels


def build_slack_gateway(config: Settings | None = None) -> SlackGateway:
    config = config or default_settings
    return SlackGateway(
        client_id=config.slack_client_id,
        client_secret=config.slack_client_secret,
        base_url=config.slack_api_base_url,
        timeout_seconds=config.slack_http_timeout_seconds,
    )
