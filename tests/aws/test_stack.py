from unittest.mock import Mock, patch

import pytest
from pulumi.automation import OpType, OutputValue

from edgeroute.aws.stack import PASSPHRASE_ENV, EdgeStack, ProvisionedEdge

DISTRIBUTION_ARN = "arn:aws:cloudfront::123456789012:distribution/E2EXAMPLE"
WEB_ACL_ARN = "arn:aws:wafv2:us-east-1:123456789012:global/webacl/test-test-shop-acl/2"


@pytest.fixture(autouse=True)
def no_passphrase_env(monkeypatch):
    monkeypatch.delenv(PASSPHRASE_ENV, raising=False)


@pytest.fixture
def pulumi_command():
    with patch("edgeroute.aws.stack.PulumiCommand") as command_cls:
        yield command_cls


@pytest.fixture
def create_or_select_stack():
    with patch("edgeroute.aws.stack.create_or_select_stack") as create:
        yield create


def _outputs():
    values = {
        "distribution_id": "E2EXAMPLE",
        "distribution_arn": DISTRIBUTION_ARN,
        "domain_name": "d111111abcdef8.cloudfront.net",
        "web_acl_arn": WEB_ACL_ARN,
        "origin_access_control_ids": {"assets": "OAC1"},
        "ip_set_arns": {"office": "arn:office"},
        "bucket_policies": ["shop-assets"],
    }
    return {key: OutputValue(value, False) for key, value in values.items()}


def test_stack_is_selected_by_app_and_env(
    tmp_path, edge_config, pulumi_command, create_or_select_stack
):
    stack = EdgeStack(edge_config, data_dir=tmp_path)

    assert stack.stack is create_or_select_stack.return_value

    kwargs = create_or_select_stack.call_args.kwargs
    assert kwargs["stack_name"] == "organization/test/test"
    assert kwargs["project_name"] == "test"
    opts = kwargs["opts"]
    assert opts.project_settings.backend.url == f"file://{tmp_path / 'state'}"
    assert opts.env_vars["AWS_REGION"] == "us-east-1"
    assert opts.env_vars["AWS_PROFILE"] == "default"
    assert opts.pulumi_home == str(tmp_path / ".pulumi")
    assert pulumi_command.install.call_args.kwargs["root"] == str(tmp_path / "pulumi")


def test_stack_is_created_once(tmp_path, edge_config, pulumi_command, create_or_select_stack):
    stack = EdgeStack(edge_config, data_dir=tmp_path)

    _ = stack.stack
    _ = stack.stack

    create_or_select_stack.assert_called_once()


def test_rerun_selects_same_stack_with_same_passphrase(
    tmp_path, edge_config, pulumi_command, create_or_select_stack
):
    _ = EdgeStack(edge_config, data_dir=tmp_path).stack
    _ = EdgeStack(edge_config, data_dir=tmp_path).stack

    first, second = create_or_select_stack.call_args_list
    assert first.kwargs["stack_name"] == second.kwargs["stack_name"]
    passphrase = first.kwargs["opts"].env_vars[PASSPHRASE_ENV]
    assert len(passphrase) >= 32
    assert second.kwargs["opts"].env_vars[PASSPHRASE_ENV] == passphrase
    assert (tmp_path / "passphrases" / "test-test").read_text() == passphrase


def test_passphrase_from_environment_wins(tmp_path, edge_config, monkeypatch):
    monkeypatch.setenv(PASSPHRASE_ENV, "from-env")

    assert EdgeStack(edge_config, data_dir=tmp_path).passphrase() == "from-env"
    assert not (tmp_path / "passphrases").exists()


def test_up_returns_stack_outputs(tmp_path, edge_config):
    stack = EdgeStack(edge_config, data_dir=tmp_path)
    stack._stack = Mock()
    stack._stack.up.return_value.outputs = _outputs()
    stack._stack.up.return_value.summary.resource_changes = {"create": 7}

    result = stack.up()

    assert result == ProvisionedEdge(
        distribution_id="E2EXAMPLE",
        distribution_arn=DISTRIBUTION_ARN,
        domain_name="d111111abcdef8.cloudfront.net",
        web_acl_arn=WEB_ACL_ARN,
        origin_access_control_ids={"assets": "OAC1"},
        ip_set_arns={"office": "arn:office"},
        bucket_policies=["shop-assets"],
        resource_changes={"create": 7},
    )


def test_update_reports_changes(tmp_path, edge_config):
    stack = EdgeStack(edge_config, data_dir=tmp_path)
    stack._stack = Mock()
    stack._stack.up.return_value.outputs = _outputs()
    stack._stack.up.return_value.summary.resource_changes = {"same": 6, "update": 1}

    assert stack.up().resource_changes == {"same": 6, "update": 1}


def test_preview_returns_change_summary(tmp_path, edge_config):
    stack = EdgeStack(edge_config, data_dir=tmp_path)
    stack._stack = Mock()
    stack._stack.preview.return_value.change_summary = {OpType.CREATE: 7, OpType.SAME: 1}

    assert stack.preview() == {"create": 7, "same": 1}


def test_destroy(tmp_path, edge_config):
    stack = EdgeStack(edge_config, data_dir=tmp_path)
    stack._stack = Mock()

    stack.destroy()

    stack._stack.destroy.assert_called_once()
