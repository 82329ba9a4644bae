"""AWS-specific test fixtures shared across aws test modules."""

import pytest

from edgeroute.config import EdgeConfig


@pytest.fixture
def edge_data():
    return {
        "name": "shop",
        "origins": [
            {
                "id": "assets",
                "kind": "static",
                "address": "shop-assets.s3.us-east-1.amazonaws.com",
                "signing": {"signing_behavior": "always"},
            },
            {
                "id": "api",
                "kind": "dynamic",
                "address": "abc123.lambda-url.us-east-1.on.aws",
                "timeout": 20,
            },
        ],
        "behaviors": [
            {
                "pattern": "/api/*",
                "origin_id": "api",
                "allowed_methods": ["GET", "HEAD", "OPTIONS", "PUT", "POST", "PATCH", "DELETE"],
                "cached_methods": ["GET", "HEAD"],
                "query_forwarding": True,
                "cookie_forwarding": {"whitelisted_names": ["session", "csrf"]},
                "viewer_protocol_policy": "https-only",
                "default_ttl": 0,
                "max_ttl": 0,
            },
            {"pattern": "*", "origin_id": "assets"},
        ],
        "rules": [
            {
                "name": "common",
                "priority": 0,
                "action": "block",
                "statement": {
                    "managed_rule_group": {
                        "name": "AWSManagedRulesCommonRuleSet",
                        "excluded_rules": ["SizeRestrictions_BODY"],
                    }
                },
            },
            {
                "name": "block-admin-outside-office",
                "priority": 1,
                "action": "block",
                "statement": {
                    "and": [
                        {
                            "byte_match": {
                                "field": "uri_path",
                                "search_string": "/admin",
                                "positional_constraint": "STARTS_WITH",
                            }
                        },
                        {"not": {"ip_set": {"name": "office", "addresses": ["203.0.113.0/24"]}}},
                    ]
                },
            },
        ],
        "aliases": ["shop.example.com"],
        "certificate_arn": "arn:aws:acm:us-east-1:123456789012:certificate/abc",
    }


@pytest.fixture
def edge_config(edge_data):
    return EdgeConfig.from_dict(edge_data)
