from app.integrations.messaging.base_gateway import (
    GatewayAPIError,
    GatewayConfigurationError,
    GatewayError,
    GatewayRateLimitedError,
    GatewayTransportError,
    MessagingGateway,
    RefreshedToken,
)
from app.integrations.messaging.slack_gateway import SlackGateway, build_slack_gateway

__all__ = [
    "GatewayError",
    "GatewayAPIError",
    "GatewayRateLimitedError",
    "GatewayTransportError",
    "GatewayConfigurationError",
    "MessagingGateway",
    "RefreshedToken",
    "SlackGateway",
    "build_slack_gateway",
]
