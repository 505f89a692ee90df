from __future__ import annotations

import pytest
from conftest import FakeGateway, Tick

from cfn_operations import cli
from cfn_operations.gateway.base import UnitDescription

TEMPLATE_YAML = """
Resources:
  Bucket:
    Type: AWS::S3::Bucket
"""


@pytest.fixture
def gateway(monkeypatch: pytest.MonkeyPatch) -> FakeGateway:
    fake = FakeGateway()
    monkeypatch.setattr(cli, "CloudFormationGateway", lambda **_: fake)
    monkeypatch.setattr(cli, "configure_logging", lambda level=None: None)
    return fake


def _unit(status: str) -> UnitDescription:
    return UnitDescription(
        unit_id="arn:my-stack",
        unit_name="my-stack",
        status=status,
        outputs={"Arn": "arn:aws:s3:::bucket"},
    )


def test_parser_collects_repeated_options() -> None:
    args = cli.build_parser().parse_args(
        [
            "--region",
            "eu-west-1",
            "apply",
            "my-stack",
            "template.yaml",
            "-p",
            "Size=3",
            "-p",
            "Name=a=b",
            "--capability",
            "CAPABILITY_IAM",
            "--disable-rollback",
        ]
    )

    assert args.region == "eu-west-1"
    assert dict(args.parameter) == {"Size": "3", "Name": "a=b"}
    assert args.capability == ["CAPABILITY_IAM"]
    assert args.disable_rollback is True


def test_parser_rejects_malformed_parameter() -> None:
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args(["apply", "my-stack", "t.yaml", "-p", "novalue"])


def test_missing_template_file(gateway: FakeGateway, tmp_path) -> None:
    assert cli.main(["apply", "my-stack", str(tmp_path / "missing.yaml")]) == 2
    assert gateway.calls["describe_unit"] == 0


def test_apply_without_changes(
    gateway: FakeGateway, tmp_path, capsys: pytest.CaptureFixture[str]
) -> None:
    template = tmp_path / "template.yaml"
    template.write_text(TEMPLATE_YAML, encoding="utf-8")
    gateway.existing = _unit("UPDATE_COMPLETE")
    gateway.no_changes = True

    assert cli.main(["--quiet", "apply", "my-stack", str(template)]) == 0
    assert "applied successfully (noop)" in capsys.readouterr().out


def test_delete_absent_stack(gateway: FakeGateway, capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["delete", "my-stack"]) == 0
    assert "deleted successfully" in capsys.readouterr().out


def test_busy_stack_is_an_error(gateway: FakeGateway, capsys: pytest.CaptureFixture[str]) -> None:
    gateway.existing = _unit("UPDATE_IN_PROGRESS")

    assert cli.main(["delete", "my-stack"]) == 2
    assert "UPDATE_IN_PROGRESS" in capsys.readouterr().err


def test_invalid_configuration_exits_with_usage_error(
    gateway: FakeGateway, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    def broken() -> None:
        raise RuntimeError("Invalid configuration: min_interval_seconds must not exceed ...")

    monkeypatch.setattr(cli, "load_settings", broken)

    assert cli.main(["delete", "my-stack"]) == 2
    assert "Invalid configuration" in capsys.readouterr().err
    assert gateway.calls["describe_unit"] == 0


def test_client_request_token_and_log_level_are_passed_on(
    gateway: FakeGateway, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    levels: list[str | None] = []
    monkeypatch.setattr(cli, "configure_logging", lambda level=None: levels.append(level))
    gateway.existing = _unit("CREATE_COMPLETE")
    gateway.ticks = [Tick("DELETE_COMPLETE")]

    code = cli.main(
        ["--quiet", "--log-level", "debug", "delete", "my-stack", "--client-request-token", "t-1"]
    )

    assert code == 0
    assert levels == ["DEBUG"]
    assert gateway.released == ["t-1"]
