"""Client-side flow orchestration and outbound calls."""

from fedgate.core.flows.gateway import FederationGateway, ResourceResponse, TokenResponse
from fedgate.core.flows.orchestrator import (
    AuthorizeHandoff,
    FlowOrchestrator,
    FlowState,
    FlowStatus,
    ResourceOutcome,
)

__all__ = [
    "AuthorizeHandoff",
    "FederationGateway",
    "FlowOrchestrator",
    "FlowState",
    "FlowStatus",
    "ResourceOutcome",
    "ResourceResponse",
    "TokenResponse",
]
