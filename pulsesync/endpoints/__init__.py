"""Endpoint registry: the static set of probe targets."""

from .registry import DEFAULT_ENDPOINTS, Endpoint, EndpointRegistry, load_endpoints
