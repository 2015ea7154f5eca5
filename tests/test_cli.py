import logging
from logging.handlers import TimedRotatingFileHandler
from unittest.mock import MagicMock, patch

import pytest
import yaml
from click.testing import CliRunner
from rich.logging import RichHandler

from nrlayers.cli import app_logger, cli, setup_logging

from conftest import INGESTION_ARN

LAYER_ARN = "arn:aws:lambda:us-east-1:451483290750:layer:NewRelicPython37:20"

SERVERLESS_YML = f"""\
service: orders
provider:
  name: aws
  region: us-east-1
  runtime: python3.7
custom:
  newRelic:
    accountId: "2421051"
    layerArn: {LAYER_ARN}
functions:
  create:
    handler: handler.create
"""


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def project(tmp_path, monkeypatch):
    (tmp_path / "serverless.yml").write_text(SERVERLESS_YML)
    monkeypatch.chdir(tmp_path)
    return tmp_path


def test_no_command_shows_help(runner):
    result = runner.invoke(cli, [])

    assert result.exit_code == 0
    assert "package" in result.output
    assert "deploy" in result.output


def test_package_prints_instrumented_manifest(runner, project):
    result = runner.invoke(cli, ["package"])

    assert result.exit_code == 0, result.output
    assert "newrelic_lambda_wrapper.handler" in result.stdout
    assert LAYER_ARN in result.stdout
    assert (project / "serverless.yml").read_text() == SERVERLESS_YML


def test_package_in_place(runner, project):
    result = runner.invoke(cli, ["package", "--in-place"])

    assert result.exit_code == 0, result.output
    data = yaml.safe_load((project / "serverless.yml").read_text())
    create = data["functions"]["create"]
    assert create["handler"] == "newrelic_lambda_wrapper.handler"
    assert create["layers"] == [LAYER_ARN]
    assert create["environment"]["NEW_RELIC_LAMBDA_HANDLER"] == "handler.create"


def test_package_output_file(runner, project):
    result = runner.invoke(cli, ["package", "-o", "instrumented.yml", "--region", "eu-west-1"])

    assert result.exit_code == 0, result.output
    data = yaml.safe_load((project / "instrumented.yml").read_text())
    assert data["functions"]["create"]["layers"] == [LAYER_ARN]


def test_package_rejects_output_with_in_place(runner, project):
    result = runner.invoke(cli, ["package", "-o", "x.yml", "--in-place"])

    assert result.exit_code == 2  # noqa: PLR2004
    assert "cannot be used together" in result.output


def test_package_fails_on_lookup_failure(runner, project, monkeypatch):
    text = SERVERLESS_YML.replace(f"    layerArn: {LAYER_ARN}\n", "")
    (project / "serverless.yml").write_text(text)
    get = MagicMock()
    get.return_value.json.return_value = {"Layers": []}
    monkeypatch.setattr("nrlayers.layer_arn.requests.get", get)

    result = runner.invoke(cli, ["package"])

    assert result.exit_code == 1
    get.assert_called_once()


def test_package_writes_nothing_when_a_function_fails(runner, project):
    text = SERVERLESS_YML.replace(
        "    handler: handler.create\n",
        "    handler: handler.create\n"
        "    runtime: nodejs12.x\n"
        "    package:\n"
        "      exclude: tmp/**\n",
    )
    (project / "serverless.yml").write_text(text)

    result = runner.invoke(cli, ["package", "--in-place"])

    assert result.exit_code == 1
    assert "package.exclude must be a list" in result.output
    assert "newrelic-lambda-wrapper.handler" not in result.stdout
    assert (project / "serverless.yml").read_text() == text


def test_missing_manifest(runner, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr("nrlayers.project.MANIFEST_FILENAMES", ("nrlayers-missing.yml",))

    result = runner.invoke(cli, ["package"])

    assert result.exit_code == 1
    assert "Could not find serverless.yml" in result.output


def test_deploy_configures_log_filters(runner, project):
    lambda_client = MagicMock()
    lambda_client.get_function.return_value = {"Configuration": {"FunctionArn": INGESTION_ARN}}
    logs_client = MagicMock()
    logs_client.describe_subscription_filters.return_value = {"subscriptionFilters": []}

    with patch("nrlayers.plugin.boto3.Session") as mock_session:
        mock_session.return_value.client.side_effect = lambda name: {
            "lambda": lambda_client,
            "logs": logs_client,
        }[name]
        result = runner.invoke(cli, ["deploy", "--stage", "prod"])

    assert result.exit_code == 0, result.output
    logs_client.put_subscription_filter.assert_called_once_with(
        logGroupName="/aws/lambda/orders-prod-create",
        filterName="NewRelicLogStreaming",
        filterPattern="NR_LAMBDA_MONITORING",
        destinationArn=INGESTION_ARN,
    )


def test_remove_asks_for_confirmation(runner, project):
    with patch("nrlayers.plugin.boto3.Session") as mock_session:
        result = runner.invoke(cli, ["remove"], input="n\n")

    assert result.exit_code == 0
    assert "Removal cancelled." in result.output
    mock_session.assert_not_called()


def test_remove_with_yes(runner, project):
    with patch("nrlayers.plugin.boto3.Session") as mock_session:
        logs_client = mock_session.return_value.client.return_value
        result = runner.invoke(cli, ["remove", "--yes"])

    assert result.exit_code == 0, result.output
    logs_client.delete_subscription_filter.assert_called_once_with(
        logGroupName="/aws/lambda/orders-dev-create", filterName="NewRelicLogStreaming"
    )


def test_setup_logging(tmp_path, monkeypatch):
    monkeypatch.setattr("nrlayers.cli.user_log_dir", lambda name: str(tmp_path / name))
    monkeypatch.setattr(app_logger, "handlers", [])

    log_file = setup_logging(2)
    setup_logging(0)

    assert log_file == tmp_path / "nrlayers" / "nrlayers.log"
    assert [type(h) for h in app_logger.handlers] == [TimedRotatingFileHandler, RichHandler]
    assert app_logger.handlers[1].level == logging.DEBUG
    for handler in app_logger.handlers:
        handler.close()
