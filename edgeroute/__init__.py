"""Edge request routing and access control."""

from edgeroute.config import EdgeConfig, load_config
from edgeroute.http import EdgeRequest, EdgeResponse
from edgeroute.routing.router import EdgeRouter

__all__ = ["EdgeConfig", "EdgeRequest", "EdgeResponse", "EdgeRouter", "load_config"]
