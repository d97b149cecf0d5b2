"""Task implementations for AWS Elastic Load Balancing v2 resources."""

from .listener import LoadBalancerListener
from .load_balancer import LoadBalancer
from .target_group import TargetGroup

__all__ = ["LoadBalancer", "LoadBalancerListener", "TargetGroup"]
