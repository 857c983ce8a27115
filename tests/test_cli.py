import json
import logging

import pytest
import yaml
from click.testing import CliRunner

from infra_reconcile.cli.main import cli


TEMPLATE = {
    "variables": {"env": "dev"},
    "resources": [
        {"type": "AWS::S3::Bucket", "name": "logs", "attributes": {"BucketName": "logs-${var.env}"}},
        {
            "type": "AWS::SQS::Queue",
            "name": "jobs",
            "attributes": {"QueueName": "jobs-${var.env}", "Tags": [{"Key": "logs", "Value": "${AWS::S3::Bucket.logs.Arn}"}]},
        },
    ],
    "outputs": {"bucket": "${AWS::S3::Bucket.logs.id}", "queue_arn": "${AWS::SQS::Queue.jobs.Arn}"},
}


def flat(text):
    return " ".join(text.split())


@pytest.fixture(autouse=True)
def restore_logging():
    """The CLI reconfigures the root logger; put it back afterwards."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def project(tmp_path):
    (tmp_path / "infrastructure.yaml").write_text(yaml.safe_dump(TEMPLATE, sort_keys=False))
    config = tmp_path / "reconcile.yaml"
    config.write_text(
        "project: {name: cli-test}\n"
        "provider: {name: local, region: eu-west-1}\n"
        "engine:\n"
        "  retry: {base_delay: 0, max_delay: 0, jitter: false}\n"
    )
    return tmp_path


@pytest.fixture
def run(project):
    runner = CliRunner()

    def invoke(*args, **kwargs):
        return runner.invoke(
            cli,
            ["--config", str(project / "reconcile.yaml"), "--no-log-file", *args],
            **kwargs
        )
    return invoke


def test_plan_apply_plan_cycle(run):
    pending = run("plan")
    assert pending.exit_code == 2, pending.output
    assert "Plan: 2 to add, 0 to change, 0 to destroy" in flat(pending.output)

    applied = run("apply", "--yes")
    assert applied.exit_code == 0, applied.output
    assert "Apply complete" in applied.output

    settled = run("plan")
    assert settled.exit_code == 0, settled.output
    assert "No changes" in settled.output


def test_plan_json(run):
    result = run("plan", "--json")

    assert result.exit_code == 2
    data = json.loads(result.stdout)
    assert data["summary"] == {"create": 2, "update": 0, "delete": 0, "no_change": 0}
    assert [change["identifier"] for change in data["changes"]] == [
        "AWS::S3::Bucket.logs", "AWS::SQS::Queue.jobs",
    ]
    assert data["changes"][1]["waits_on"] == ["AWS::S3::Bucket.logs"]


def test_var_override_changes_plan(run):
    assert run("apply", "--yes").exit_code == 0

    result = run("plan", "--json", "--var", "env=prod")

    assert result.exit_code == 2
    data = json.loads(result.stdout)
    assert data["summary"]["update"] == 2
    assert data["changes"][0]["diffs"] == [
        {"path": "BucketName", "kind": "changed", "before": "logs-dev", "after": "logs-prod"},
    ]


def test_apply_json_and_outputs(run):
    applied = run("apply", "--yes", "--json")

    assert applied.exit_code == 0
    data = json.loads(applied.stdout)
    assert data["status"] == "success"
    assert data["summary"]["success"] == 2
    assert data["outputs"]["bucket"].startswith("bucket-")

    env = run("output", "--format", "env")
    assert env.exit_code == 0
    assert f"BUCKET={data['outputs']['bucket']}" in env.output

    single = run("output", "queue_arn")
    assert single.output.strip() == data["outputs"]["queue_arn"]

    missing = run("output", "nope")
    assert missing.exit_code == 1


def test_apply_requires_confirmation(run):
    result = run("apply", input="n\n")

    assert result.exit_code == 1
    assert "Aborted" in result.output
    assert run("plan").exit_code == 2


def test_destroy(run):
    assert run("apply", "--yes").exit_code == 0

    result = run("destroy", "--yes")
    assert result.exit_code == 0, result.output
    assert "Destroy complete" in result.output

    again = run("destroy", "--yes")
    assert again.exit_code == 0
    assert "No resources to destroy" in again.output

    assert run("plan", "--destroy").exit_code == 0


def test_plan_destroy_lists_deletes(run):
    run("apply", "--yes")

    result = run("plan", "--destroy", "--json")

    assert result.exit_code == 2
    data = json.loads(result.stdout)
    assert data["destroy"] is True
    assert [change["identifier"] for change in data["changes"]] == [
        "AWS::SQS::Queue.jobs", "AWS::S3::Bucket.logs",
    ]


def test_invalid_template_exits_1(run, project):
    broken = dict(TEMPLATE, outputs={"x": "${AWS::S3::Bucket.missing.Arn}"})
    (project / "infrastructure.yaml").write_text(yaml.safe_dump(broken))

    assert run("plan").exit_code == 1
    result = run("validate")
    assert result.exit_code == 1
    assert "not declared" in flat(result.output)


def test_cycle_exits_1(run, project):
    cyclic = {"resources": [
        {"type": "Test::Thing", "name": "a", "attributes": {"Peer": "${Test::Thing.b.id}"}},
        {"type": "Test::Thing", "name": "b", "attributes": {"Peer": "${Test::Thing.a.id}"}},
    ]}
    (project / "infrastructure.yaml").write_text(yaml.safe_dump(cyclic))

    result = run("plan")

    assert result.exit_code == 1
    assert "Circular reference" in flat(result.output)


def test_missing_config_exits_1(tmp_path):
    result = CliRunner().invoke(cli, ["--config", str(tmp_path / "nope.yaml"), "--no-log-file", "plan"])

    assert result.exit_code == 1
    assert "not found" in result.output


def test_bad_var_is_usage_error(run):
    result = run("plan", "--var", "novalue")

    assert result.exit_code == 2
    assert "key=value" in result.output


def test_date_like_var_stays_a_string(run):
    result = run("plan", "--json", "--var", "env=2024-01-01")

    assert result.exit_code == 2
    data = json.loads(result.stdout)
    assert data["changes"][0]["diffs"][0]["after"] == "logs-2024-01-01"


def test_unparseable_var_is_usage_error(run):
    result = run("plan", "--var", "env=[unclosed")

    assert result.exit_code == 2
    assert "cannot parse value" in flat(result.output)


def test_validate(run):
    result = run("validate")

    assert result.exit_code == 0
    assert "is valid: 2 resources, 1 references, 2 outputs" in flat(result.output)


@pytest.mark.parametrize("output_format, expected", [
    ("order", "Level 1:"),
    ("dot", '"AWS::SQS::Queue.jobs" -> "AWS::S3::Bucket.logs" [label="Arn"];'),
    ("tree", "AWS::SQS::Queue.jobs"),
])
def test_graph_formats(run, output_format, expected):
    result = run("graph", "--format", output_format)

    assert result.exit_code == 0
    assert expected in result.output


def test_log_file_is_written_next_to_config(project):
    result = CliRunner().invoke(cli, ["--config", str(project / "reconcile.yaml"), "validate"])

    assert result.exit_code == 0
    assert list((project / ".reconcile" / "logs").glob("reconcile-*.jsonl"))
