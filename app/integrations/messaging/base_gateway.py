from abc import ABC, abstractmethod
from dataclasses import dataclass


class GatewayError(RuntimeError):
    error_code: str = "gateway_error"

    def __init__(self, message: str, *, error_code: str | None = None) -> None:
        super().__init__(message)
        if error_code:
            self.error_code = error_code


class GatewayAPIError(GatewayError):
    error_code = "gateway_api_error"


class GatewayRateLimitedError(GatewayError):
    error_code = "rate_limited"

    def __init__(self, message: str, *, retry_after_seconds: int | None = None) -> None:
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class GatewayTransportError(GatewayError):
    error_code = "gateway_transport_error"


class GatewayConfigurationError(GatewayError):
    error_code = "gateway_configuration_error"


@dataclass(frozen=True)
class RefreshedToken:
    access_token: str
    refresh_token: str | None
    expires_in: int


class MessagingGateway(ABC):
    @abstractmethod
    async def post_message(self, *, token: str, channel_id: str, text: str, as_user: bool = False) -> dict:
        raise NotImplementedError

    @abstractmethod
    async def refresh_token(self, refresh_token: str) -> RefreshedToken:
        raise NotImplementedError

    @abstractmethod
    async def list_channels(self, *, token: str) -> list[dict]:
        raise NotImplementedError
