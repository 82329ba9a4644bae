"""CloudFront, WAFv2 and S3 resources for an edge."""

from edgeroute.aws.cloudfront import (
    render_bucket_policy,
    render_distribution,
    render_edge,
    render_rules,
    render_web_acl,
)
from edgeroute.aws.edge import EdgeDistribution, EdgeDistributionResources
from edgeroute.aws.stack import EdgeStack, ProvisionedEdge

__all__ = [
    "EdgeDistribution",
    "EdgeDistributionResources",
    "EdgeStack",
    "ProvisionedEdge",
    "render_bucket_policy",
    "render_distribution",
    "render_edge",
    "render_rules",
    "render_web_acl",
]
