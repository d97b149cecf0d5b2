"""AWS API Mock for integration testing.

In-memory implementations of the engine's capability interface for ELBv2
load balancers, target groups and listeners plus EC2 volumes.

Key Features:
- Call journal shared across resource kinds
- Page size honouring, with an oversized-page mode
- ClientError injection per operation
- Injection of tag responses for identifiers never requested

Usage:
    from aws_mock import MockAWS

    aws = MockAWS()
    aws.load_balancers.fail_on("create")
    context = ConvergeContext(target=LiveTarget(aws.cloud()), cloud=aws.cloud())
"""

from .context import DEFAULT_CLUSTER, DEFAULT_REGION, MockAWS
from .resources import (
    CallRecord,
    MockListeners,
    MockLoadBalancers,
    MockResourceAPI,
    MockResourceLister,
    MockTargetGroups,
    MockVolumes,
    client_error,
)

__all__ = [
    "DEFAULT_CLUSTER",
    "DEFAULT_REGION",
    "CallRecord",
    "MockAWS",
    "MockListeners",
    "MockLoadBalancers",
    "MockResourceAPI",
    "MockResourceLister",
    "MockTargetGroups",
    "MockVolumes",
    "client_error",
]
