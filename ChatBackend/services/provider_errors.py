import asyncio
from enum import Enum

import openai


class ProviderErrorCategory(str, Enum):
    SERVICE_UNAVAILABLE = "service_unavailable"
    NETWORK = "network"
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    UNKNOWN = "unknown"


FRIENDLY_MESSAGES = {
    ProviderErrorCategory.SERVICE_UNAVAILABLE: "The AI service is temporarily unavailable. Please try again in a moment.",
    ProviderErrorCategory.NETWORK: "We couldn't reach the AI service. Check your connection and try again.",
    ProviderErrorCategory.TIMEOUT: "The AI service took too long to respond. Please try again.",
    ProviderErrorCategory.RATE_LIMITED: "Too many requests right now. Please wait a moment and try again.",
    ProviderErrorCategory.UNKNOWN: "Something went wrong while generating a response. Please try again.",
}

HTTP_STATUS = {
    ProviderErrorCategory.SERVICE_UNAVAILABLE: 503,
    ProviderErrorCategory.NETWORK: 502,
    ProviderErrorCategory.TIMEOUT: 504,
    ProviderErrorCategory.RATE_LIMITED: 429,
    ProviderErrorCategory.UNKNOWN: 502,
}


# Map a technical upstream failure onto one of the user-facing categories
def classify_provider_error(exc: BaseException) -> ProviderErrorCategory:
    # APITimeoutError subclasses APIConnectionError, so it must be checked first
    if isinstance(exc, (asyncio.TimeoutError, openai.APITimeoutError)):
        return ProviderErrorCategory.TIMEOUT
    if isinstance(exc, openai.APIConnectionError):
        return ProviderErrorCategory.NETWORK
    if isinstance(exc, openai.RateLimitError):
        return ProviderErrorCategory.RATE_LIMITED
    if isinstance(exc, openai.APIStatusError):
        if exc.status_code >= 500:
            return ProviderErrorCategory.SERVICE_UNAVAILABLE
        return ProviderErrorCategory.UNKNOWN
    if isinstance(exc, OSError):
        return ProviderErrorCategory.NETWORK
    # Missing API key / unsupported provider: the service cannot be reached as configured
    if isinstance(exc, ValueError):
        return ProviderErrorCategory.SERVICE_UNAVAILABLE
    return ProviderErrorCategory.UNKNOWN
