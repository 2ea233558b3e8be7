import asyncio
import os
import subprocess
import sys
from pathlib import Path

from aiohttp import test_utils

from gitlab_fakes import gitlab_app

PROJECT_ROOT = Path(__file__).resolve().parent.parent

TRACEPARENT = "00-4bf92f3577b34da6a3ce929d0e0e4736-00f067aa0ba902b7-01"


def _base_env(**extra):
    env = {
        key: value
        for key, value in os.environ.items()
        if not key.startswith(("CI_", "GITLAB_", "OTEL_", "TRACE", "PIPETRACE_", "DEBUG"))
    }
    env["PYTHONPATH"] = os.pathsep.join(filter(None, [str(PROJECT_ROOT), env.get("PYTHONPATH")]))
    env.update(
        {
            "OTEL_EXPORTER_OTLP_PROTOCOL": "console",
            "CI_PROJECT_ID": "42",
            "CI_PIPELINE_ID": "123",
            "CI_PROJECT_NAMESPACE": "acme",
            "CI_PROJECT_NAME": "widgets",
            "CI_PIPELINE_SOURCE": "push",
            "CI_COMMIT_SHA": "9f3c1d2e4b5a67890fedcba1234567890abcdef1",
            "CI_JOB_TOKEN": "secret",
        }
    )
    env.update(extra)
    return env


def run_cli(env, *args):
    return subprocess.run(
        [sys.executable, "-m", "pipetrace", *args],
        text=True,
        capture_output=True,
        cwd=PROJECT_ROOT,
        env=env,
        timeout=60,
    )


async def _run_against_fake_gitlab(*args, **extra_env):
    async with test_utils.TestServer(gitlab_app()) as server:
        env = _base_env(CI_SERVER_URL=str(server.make_url("")).rstrip("/"), **extra_env)
        process = await asyncio.create_subprocess_exec(
            sys.executable,
            "-m",
            "pipetrace",
            *args,
            cwd=PROJECT_ROOT,
            env=env,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=60)
        return process.returncode, stdout.decode(), stderr.decode()


def test_exports_pipeline_to_console():
    returncode, stdout, stderr = asyncio.run(_run_against_fake_gitlab())

    assert returncode == 0, stderr
    assert stdout.startswith("TRACE_PARENT=00-")
    assert '"name": "acme/widgets #123"' in stdout
    assert '"name": "Stage: build - job_id: 1001"' in stdout
    assert '"name": "Stage: unit - job_id: 1003"' in stdout
    # skipped job
    assert "job_id: 1002" not in stdout
    assert '"message": "pipeline failed"' in stdout
    assert '"message": "job failed"' in stdout
    assert "Traces exported successfully" in stderr


def test_downstream_pipeline_continues_upstream_trace(tmp_path):
    dotenv = tmp_path / "trace.env"
    returncode, stdout, stderr = asyncio.run(
        _run_against_fake_gitlab("--dotenv", str(dotenv), CI_PIPELINE_SOURCE="pipeline", TRACEPARENT=TRACEPARENT)
    )

    assert returncode == 0, stderr
    assert stdout.startswith("TRACE_PARENT=00-4bf92f3577b34da6a3ce929d0e0e4736-")
    assert '"traceId": "4bf92f3577b34da6a3ce929d0e0e4736"' in stdout
    assert '"parentSpanId": "00f067aa0ba902b7"' in stdout
    assert dotenv.read_text(encoding="utf-8").startswith("TRACE_PARENT=00-4bf92f3577b34da6a3ce929d0e0e4736-")


def test_unsupported_protocol_fails():
    result = run_cli(_base_env(CI_SERVER_URL="http://127.0.0.1:9"), "--protocol", "carrier-pigeon")

    assert result.returncode == 1
    assert "failed to initialize tracer: unsupported protocol: carrier-pigeon" in result.stderr
    assert result.stdout == ""


def test_missing_server_url_fails():
    result = run_cli(_base_env())

    assert result.returncode == 1
    assert "failed to create GitLab client" in result.stderr
    assert "TRACE_PARENT" not in result.stdout


def test_invalid_configuration_fails_without_traceback():
    result = run_cli(_base_env(CI_SERVER_URL="http://127.0.0.1:9", PIPETRACE_REQUEST_TIMEOUT="soon"))

    assert result.returncode == 1
    assert "invalid configuration: PIPETRACE_REQUEST_TIMEOUT must be a number of seconds" in result.stderr
    assert "Traceback" not in result.stderr
    assert result.stdout == ""
