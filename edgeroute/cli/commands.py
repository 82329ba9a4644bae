import json
import logging
from pathlib import Path

from rich.console import Console
from rich.table import Table

from edgeroute.aws.cloudfront import render_edge
from edgeroute.aws.stack import EdgeStack, ProvisionedEdge
from edgeroute.config import EdgeConfig, load_config
from edgeroute.context import AppContext, _ContextStore
from edgeroute.http import EdgeRequest
from edgeroute.routing.behaviors import (
    CacheBehavior,
    ViewerProtocolPolicy,
    cache_key,
    select_behavior,
    validate_behaviors,
)
from edgeroute.waf.filter import AccessControlFilter

logger = logging.getLogger(__name__)

console = Console()

_ROUTE_COLUMNS = (
    "#",
    "Pattern",
    "Origin",
    "Methods",
    "Cached",
    "Viewer",
    "TTL",
    "Query",
    "Cookies",
)


def _set_context(config: EdgeConfig, env: str, app: str | None) -> None:
    _ContextStore.set(AppContext(name=app or config.name, env=env, aws=config.aws))


def run_validate(config_path: Path) -> EdgeConfig:
    config = load_config(config_path)
    console.print(
        f"[bold green]✓[/bold green] {config_path} is valid: "
        f"{len(config.origins)} origins, {len(config.behaviors)} behaviors, "
        f"{len(config.rules)} access rules",
        highlight=False,
    )
    return config


def _cookies(behavior: CacheBehavior) -> str:
    cookies = behavior.cookie_forwarding
    if cookies.forward == "whitelist":
        return ", ".join(sorted(cookies.whitelisted_names))
    return cookies.forward


def run_routes(config_path: Path) -> None:
    config = load_config(config_path)
    ordered, default = validate_behaviors(config.behaviors, {o.id for o in config.origins})

    table = Table(title=f"Behaviors of '{config.name}' in evaluation order")
    for column in _ROUTE_COLUMNS:
        table.add_column(column)
    for idx, behavior in enumerate((*ordered, default), start=1):
        origin = config.origin(behavior.origin_id)
        table.add_row(
            str(idx),
            behavior.pattern,
            f"{origin.id} ({origin.kind.value})",
            ", ".join(sorted(behavior.allowed_methods)),
            ", ".join(sorted(behavior.cached_methods)),
            behavior.viewer_protocol_policy.value,
            f"{behavior.min_ttl}/{behavior.default_ttl}/{behavior.max_ttl}",
            "yes" if behavior.query_forwarding else "no",
            _cookies(behavior),
        )
    console.print(table)


def run_resolve(
    config_path: Path,
    path: str,
    method: str,
    scheme: str,
    query: str,
    headers: dict[str, str],
    client_ip: str | None,
) -> None:
    """Print every decision the router would take for a request, without contacting origins."""
    config = load_config(config_path)
    request = EdgeRequest(
        method=method,
        path=path,
        query=query,
        headers=headers,
        scheme=scheme,
        host=headers.get("Host", "example.com"),
        client_ip=client_ip,
    )
    ordered, default = validate_behaviors(config.behaviors, {o.id for o in config.origins})
    behavior = select_behavior(ordered, default, request.path)
    origin = config.origin(behavior.origin_id)
    console.print(f"Behavior: [bold]{behavior.pattern}[/bold] → origin [cyan]{origin.id}[/cyan]")

    if request.scheme == "http":
        policy = behavior.viewer_protocol_policy
        if policy is ViewerProtocolPolicy.REDIRECT_TO_HTTPS:
            console.print("Protocol: [yellow]301[/yellow] redirect to HTTPS")
            return
        if policy is ViewerProtocolPolicy.HTTPS_ONLY:
            console.print("Protocol: [red]403[/red] HTTPS required")
            return
    console.print("Protocol: ok")

    decision = AccessControlFilter(config.rules, config.default_action).evaluate(request)
    rule = decision.rule_name or "default action"
    if decision.blocked:
        console.print(f"Access: [red]403[/red] blocked by {rule}", highlight=False)
        return
    console.print(f"Access: allowed by {rule}", highlight=False)

    if not behavior.allows(request.method):
        allowed = ", ".join(sorted(behavior.allowed_methods))
        console.print(f"Method: [red]405[/red] {request.method} not in {allowed}")
        return
    console.print(f"Method: {request.method} allowed")

    key = cache_key(request, behavior)
    cached = "cached" if behavior.caches(request.method) else "not cached"
    console.print(
        f"Cache key ({cached}): pattern={key.pattern} path={key.path} query={key.query!r} "
        f"cookies={dict(key.cookies)} protocol={key.protocol}",
        highlight=False,
    )


def run_render(config_path: Path, env: str, app: str | None) -> None:
    config = load_config(config_path)
    _set_context(config, env, app)
    payloads = render_edge(config)
    console.print_json(json.dumps(payloads, default=_json_default))


def run_provision(config_path: Path, env: str, app: str | None) -> ProvisionedEdge:
    config = load_config(config_path)
    _set_context(config, env, app)
    with console.status("Provisioning edge..."):
        result = EdgeStack(config).up()
    console.print(
        f"[bold green]✓[/bold green] Distribution [cyan]{result.distribution_id}[/cyan] "
        f"at [bold]{result.domain_name}[/bold]",
        highlight=False,
    )
    console.print(f"  Web ACL: {result.web_acl_arn}", highlight=False)
    for bucket in result.bucket_policies:
        console.print(f"  Bucket policy updated: {bucket}", highlight=False)
    _print_changes(result.resource_changes)
    return result


def run_diff(config_path: Path, env: str, app: str | None) -> dict[str, int]:
    config = load_config(config_path)
    _set_context(config, env, app)
    with console.status("Comparing with deployed edge..."):
        changes = EdgeStack(config).preview()
    _print_changes(changes)
    return changes


def run_destroy(config_path: Path, env: str, app: str | None) -> None:
    config = load_config(config_path)
    _set_context(config, env, app)
    with console.status("Destroying edge..."):
        EdgeStack(config).destroy()
    console.print(
        f"[bold green]✓[/bold green] Edge '{config.name}' destroyed in {env}", highlight=False
    )


def _print_changes(changes: dict[str, int]) -> None:
    if not changes:
        console.print("  No resource changes", highlight=False)
        return
    summary = ", ".join(f"{op}: {count}" for op, count in sorted(changes.items()))
    console.print(f"  Resources: {summary}", highlight=False)


def parse_header_options(values: tuple[str, ...]) -> dict[str, str]:
    headers = {}
    for value in values:
        name, sep, header_value = value.partition(":")
        if not sep or not name.strip():
            raise ValueError(f"Invalid header '{value}', expected 'Name: value'")
        headers[name.strip()] = header_value.strip()
    return headers


def _json_default(value: object) -> str:
    if isinstance(value, bytes):
        return value.decode()
    raise TypeError(f"Cannot serialize {type(value).__name__}")
