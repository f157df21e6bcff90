"""Shared fixtures for reqline scenario tests."""

import io

import pytest
from click.testing import CliRunner

from reqline import core
from reqline.executor import RequestResult


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def global_reqline_dir(tmp_path, monkeypatch):
    """Override the global ~/.reqline directory to a temp location."""
    fake_global = tmp_path / "fake_home" / ".reqline"
    fake_global.mkdir(parents=True)
    monkeypatch.setattr(core, "GLOBAL_DIR", fake_global)
    monkeypatch.setattr(core, "GLOBAL_CONFIG", fake_global / "config.yaml")
    monkeypatch.setattr(core, "DEFAULT_COOKIE_FILE", fake_global / "cookies.txt")
    return fake_global


@pytest.fixture
def tmp_project(tmp_path, monkeypatch, global_reqline_dir):
    """Run inside an empty project directory with an isolated global dir."""
    project = tmp_path / "project"
    project.mkdir()
    monkeypatch.chdir(project)
    return project


def make_request_result(
    status_code=200,
    body=b"",
    headers=None,
    reason="OK",
    error=None,
    http_version="HTTP/1.1",
):
    """Factory for RequestResult objects with an in-memory body stream."""
    r = RequestResult()
    r.status_code = status_code
    r.reason = reason
    r.http_version = http_version
    r.headers = list(headers or [])
    if isinstance(body, str):
        body = body.encode("utf-8")
    r.stream = io.BytesIO(body)
    r.error = error
    r.elapsed_ms = 42.0
    return r
