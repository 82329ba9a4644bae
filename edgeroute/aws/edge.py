import json
from dataclasses import dataclass
from typing import final

import pulumi
import pulumi_aws

from edgeroute.aws.cloudfront import (
    WAF_REGION,
    ip_set_statements,
    render_bucket_policy,
    render_distribution,
    render_ip_set,
    render_origin_access_control,
    render_rules,
    render_web_acl,
    signed_buckets,
)
from edgeroute.component import Component
from edgeroute.config import EdgeConfig
from edgeroute.context import context


@final
@dataclass(frozen=True)
class EdgeDistributionResources:
    distribution: pulumi_aws.cloudfront.Distribution
    web_acl: pulumi_aws.wafv2.WebAcl
    origin_access_controls: dict[str, pulumi_aws.cloudfront.OriginAccessControl]
    ip_sets: dict[str, pulumi_aws.wafv2.IpSet]
    bucket_policies: dict[str, pulumi_aws.s3.BucketPolicy]


@final
class EdgeDistribution(Component[EdgeDistributionResources]):
    """CloudFront distribution, web ACL and origin access for one edge configuration."""

    def __init__(self, config: EdgeConfig, name: str | None = None):
        super().__init__(name or config.name)
        self.config = config

    def _create_resources(self) -> EdgeDistributionResources:
        origin_access_controls = {
            origin.id: pulumi_aws.cloudfront.OriginAccessControl(
                context().prefix(f"{origin.id}-oac"), **render_origin_access_control(origin)
            )
            for origin in self.config.static_origins
            if origin.signing is not None
        }

        # CloudFront web ACLs and the IP sets they use must be created in us-east-1.
        waf_opts = pulumi.ResourceOptions(
            provider=pulumi_aws.Provider(
                context().prefix(f"{self.name}-waf-provider"), region=WAF_REGION
            )
        )
        ip_sets = {
            statement.name: pulumi_aws.wafv2.IpSet(
                context().prefix(f"{statement.name}-ip-set"),
                **render_ip_set(statement),
                opts=waf_opts,
            )
            for statement in ip_set_statements(self.config)
        }
        ip_set_arns = pulumi.Output.all(**{name: s.arn for name, s in ip_sets.items()})
        web_acl = pulumi_aws.wafv2.WebAcl(
            context().prefix(f"{self.name}-acl"),
            **render_web_acl(self.config),
            rule_json=ip_set_arns.apply(
                lambda arns: json.dumps(render_rules(self.config, arns or {}))
            ),
            opts=waf_opts,
        )

        distribution = pulumi_aws.cloudfront.Distribution(
            context().prefix(self.name),
            **render_distribution(
                self.config,
                {origin_id: oac.id for origin_id, oac in origin_access_controls.items()},
                web_acl.arn,
            ),
        )

        bucket_policies = {
            bucket: pulumi_aws.s3.BucketPolicy(
                context().prefix(f"{bucket}-bucket-policy"),
                bucket=bucket,
                policy=_bucket_policy(bucket, distribution.arn),
                # Ensure policy is applied after distribution
                opts=pulumi.ResourceOptions(depends_on=[distribution]),
            )
            for bucket in signed_buckets(self.config)
        }

        pulumi.export("domain_name", distribution.domain_name)
        pulumi.export("distribution_id", distribution.id)
        pulumi.export("distribution_arn", distribution.arn)
        pulumi.export("web_acl_arn", web_acl.arn)
        pulumi.export(
            "origin_access_control_ids",
            {origin_id: oac.id for origin_id, oac in origin_access_controls.items()},
        )
        pulumi.export("ip_set_arns", {name: s.arn for name, s in ip_sets.items()})
        pulumi.export("bucket_policies", list(bucket_policies))

        return EdgeDistributionResources(
            distribution, web_acl, origin_access_controls, ip_sets, bucket_policies
        )


def _bucket_policy(bucket: str, distribution_arn: pulumi.Output[str]) -> pulumi.Output[str]:
    return distribution_arn.apply(lambda arn: json.dumps(render_bucket_policy(bucket, arn)))
