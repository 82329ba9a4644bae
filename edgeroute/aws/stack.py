"""Pulumi stack that deploys an edge configuration.

Each app and environment gets its own stack in a local file backend under the
user data directory. Running ``up`` again updates the resources recorded in that
state instead of creating a second distribution.
"""

import logging
import os
import secrets
from collections.abc import Mapping
from dataclasses import dataclass, field
from importlib.metadata import version
from pathlib import Path
from typing import Any, final

from appdirs import user_data_dir
from pulumi.automation import (
    LocalWorkspaceOptions,
    OpType,
    OutputValue,
    ProjectBackend,
    ProjectSettings,
    PulumiCommand,
    Stack,
    create_or_select_stack,
    fully_qualified_stack_name,
)
from semver import VersionInfo

from edgeroute.aws.edge import EdgeDistribution
from edgeroute.config import EdgeConfig
from edgeroute.context import context

logger = logging.getLogger(__name__)

PASSPHRASE_ENV = "PULUMI_CONFIG_PASSPHRASE"  # noqa: S105
PULUMI_VERSION = VersionInfo.parse(version("pulumi"))


def get_edgeroute_data_dir() -> Path:
    return Path(user_data_dir(appname="edgeroute"))


def _op_name(op: OpType | str) -> str:
    return op.value if isinstance(op, OpType) else str(op)


def _log_output(line: str) -> None:
    logger.info("%s", line.rstrip())


@final
@dataclass(frozen=True)
class ProvisionedEdge:
    distribution_id: str
    distribution_arn: str
    domain_name: str
    web_acl_arn: str
    origin_access_control_ids: dict[str, str] = field(default_factory=dict)
    ip_set_arns: dict[str, str] = field(default_factory=dict)
    bucket_policies: list[str] = field(default_factory=list)
    resource_changes: dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_outputs(
        cls,
        outputs: Mapping[str, OutputValue],
        resource_changes: Mapping[Any, int] | None = None,
    ) -> "ProvisionedEdge":
        values = {key: output.value for key, output in outputs.items()}
        return cls(
            distribution_id=values["distribution_id"],
            distribution_arn=values["distribution_arn"],
            domain_name=values["domain_name"],
            web_acl_arn=values["web_acl_arn"],
            origin_access_control_ids=dict(values.get("origin_access_control_ids") or {}),
            ip_set_arns=dict(values.get("ip_set_arns") or {}),
            bucket_policies=list(values.get("bucket_policies") or []),
            resource_changes={
                _op_name(op): count for op, count in (resource_changes or {}).items()
            },
        )


class EdgeStack:
    def __init__(self, config: EdgeConfig, data_dir: Path | None = None) -> None:
        self.config = config
        self.data_dir = data_dir or get_edgeroute_data_dir()
        self._stack: Stack | None = None

    @property
    def stack_name(self) -> str:
        ctx = context()
        return fully_qualified_stack_name("organization", ctx.name, ctx.env)

    @property
    def state_dir(self) -> Path:
        return self.data_dir / "state"

    @property
    def stack(self) -> Stack:
        if self._stack is None:
            self._stack = self._create_stack()
        return self._stack

    def _program(self) -> None:
        _ = EdgeDistribution(self.config).resources

    def _create_stack(self) -> Stack:
        ctx = context()
        self.state_dir.mkdir(parents=True, exist_ok=True)
        logger.debug("Fully qualified stack name: %s", self.stack_name)
        backend = ProjectBackend(f"file://{self.state_dir}")
        project_settings = ProjectSettings(name=ctx.name, runtime="python", backend=backend)
        env_vars = {PASSPHRASE_ENV: self.passphrase()}
        if region := ctx.aws.region:
            env_vars["AWS_REGION"] = region
        if profile := ctx.aws.profile:
            env_vars["AWS_PROFILE"] = profile
        opts = LocalWorkspaceOptions(
            pulumi_command=PulumiCommand.install(
                root=str(self.data_dir / "pulumi"), version=PULUMI_VERSION
            ),
            env_vars=env_vars,
            project_settings=project_settings,
            # Plugins are installed here instead of ~/.pulumi
            pulumi_home=str(self.data_dir / ".pulumi"),
        )
        stack = create_or_select_stack(
            stack_name=self.stack_name,
            project_name=ctx.name,
            program=self._program,
            opts=opts,
        )
        logger.debug("Selected stack %s", self.stack_name)
        return stack

    def passphrase(self) -> str:
        """Return the secrets passphrase for this app and environment.

        ``PULUMI_CONFIG_PASSPHRASE`` wins when set. Otherwise a passphrase is
        generated on first use and kept next to the state, since the state
        cannot be decrypted without it.
        """
        if passphrase := os.environ.get(PASSPHRASE_ENV):
            return passphrase
        ctx = context()
        path = self.data_dir / "passphrases" / f"{ctx.name}-{ctx.env}"
        if path.exists():
            return path.read_text(encoding="utf-8").strip()
        passphrase = secrets.token_urlsafe(32)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(passphrase, encoding="utf-8")
        path.chmod(0o600)
        logger.warning("Created passphrase %s. Do not delete it, the state depends on it.", path)
        return passphrase

    def up(self) -> ProvisionedEdge:
        result = self.stack.up(on_output=_log_output)
        return ProvisionedEdge.from_outputs(result.outputs, result.summary.resource_changes)

    def preview(self) -> dict[str, int]:
        result = self.stack.preview(on_output=_log_output)
        return {_op_name(op): count for op, count in result.change_summary.items()}

    def destroy(self) -> None:
        self.stack.destroy(on_output=_log_output)
