# HTTP adapters
from screepsapi.adapters.endpoints import ENDPOINTS, Endpoint, build_request, get_endpoint
from screepsapi.adapters.http_client import ClientConfig, HTTPResponse, ScreepsHTTPClient
from screepsapi.adapters.rate_limit import (
    GLOBAL,
    EndpointClass,
    RateLimitPeriod,
    RateLimitRecord,
    RateLimitTracker,
)

__all__ = [
    "ENDPOINTS",
    "Endpoint",
    "build_request",
    "get_endpoint",
    "ClientConfig",
    "HTTPResponse",
    "ScreepsHTTPClient",
    "GLOBAL",
    "EndpointClass",
    "RateLimitPeriod",
    "RateLimitRecord",
    "RateLimitTracker",
]
