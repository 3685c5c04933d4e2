"""
VBS - Test Configuration and Fixtures
"""
import json
import os
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

import pytest

os.environ.pop("SERVER_IPV4", None)

from vbs.config import VBSConfig
from vbs.executor import CommandExecutor, CommandResult
from vbs.ui.presenter import SilentPresenter


class FakeGateway:
    """Returns scripted responses in order and records every call"""

    def __init__(self, responses: Sequence[Union[str, dict, Exception]] = ()):
        self.responses = list(responses)
        self.calls: List[Dict[str, Any]] = []

    def queue(self, *responses: Union[str, dict, Exception]) -> None:
        self.responses.extend(responses)

    async def send(self, model, system_prompt, user_message, max_tokens=4096, on_token=None):
        self.calls.append({
            "model": model,
            "system": system_prompt,
            "user": user_message,
            "max_tokens": max_tokens,
        })
        if not self.responses:
            raise AssertionError("FakeGateway ran out of scripted responses")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        text = response if isinstance(response, str) else json.dumps(response)
        if on_token is not None:
            on_token(len(text))
        return text


Rule = Tuple[Callable[[str], bool], CommandResult]


def ok(stdout: str = "", stderr: str = "") -> CommandResult:
    return CommandResult(command="", exit_code=0, stdout=stdout, stderr=stderr, duration=0.0)


def fail(stderr: str = "error", exit_code: int = 1, stdout: str = "") -> CommandResult:
    return CommandResult(command="", exit_code=exit_code, stdout=stdout, stderr=stderr, duration=0.0)


class ScriptedExecutor(CommandExecutor):
    """Answers commands from prefix rules instead of spawning processes.

    Rules are matched in order against the space-joined command line; the
    first match wins. A rule registered with ``once=True`` is consumed on use.
    """

    def __init__(self, default: Optional[CommandResult] = None, programs: Sequence[str] = ()):
        super().__init__()
        self.default = default or ok()
        self.programs = set(programs)
        self.rules: List[Tuple[str, CommandResult, bool]] = []
        self.calls: List[str] = []
        self.cwds: List[Optional[str]] = []

    def on(self, prefix: str, result: CommandResult, once: bool = False) -> "ScriptedExecutor":
        self.rules.append((prefix, result, once))
        return self

    def _answer(self, line: str) -> CommandResult:
        for index, (prefix, result, once) in enumerate(self.rules):
            if line.startswith(prefix):
                if once:
                    self.rules.pop(index)
                return CommandResult(command=line, exit_code=result.exit_code, stdout=result.stdout,
                                     stderr=result.stderr, duration=0.0)
        d = self.default
        return CommandResult(command=line, exit_code=d.exit_code, stdout=d.stdout, stderr=d.stderr, duration=0.0)

    async def run(self, args, cwd=None, timeout=None, env=None):
        line = " ".join(str(a) for a in args)
        self.calls.append(line)
        self.cwds.append(str(cwd) if cwd else None)
        result = self._answer(line)
        self.command_history.append(result)
        return result

    async def shell(self, command, cwd=None, timeout=None):
        return await self.run([command], cwd=cwd, timeout=timeout)

    def which(self, program):
        return program in self.programs

    def called(self, prefix: str) -> List[str]:
        return [c for c in self.calls if c.startswith(prefix)]


@pytest.fixture
def config(tmp_path) -> VBSConfig:
    """Config with everything redirected into tmp_path and no waiting"""
    return VBSConfig(
        api_key="test-api-key",
        config_dir=str(tmp_path / "vbs-home"),
        launch_settle_seconds=0,
        test_warmup_seconds=0,
        endpoint_delay_seconds=0,
        retry_base_delay=0,
        retry_max_delay=0,
    )


@pytest.fixture
def presenter() -> SilentPresenter:
    return SilentPresenter()


@pytest.fixture
def executor() -> ScriptedExecutor:
    return ScriptedExecutor()


def analysis_payload(**overrides) -> Dict[str, Any]:
    data = {
        "projectType": "api",
        "detectedStack": ["Express.js", "SQLite", "JWT"],
        "complexity": "simple",
        "estimatedFiles": 6,
        "requiredSystemPackages": [],
        "suggestedProjectName": "todo-api",
        "frontendFramework": None,
        "isStatic": False,
        "buildRequired": False,
        "summary": "A small todo REST API.",
    }
    data.update(overrides)
    return data


def endpoint_payload(method: str = "GET", path: str = "/api/todos", **overrides) -> Dict[str, Any]:
    data = {
        "method": method,
        "path": path,
        "description": f"{method} {path}",
        "requiresAuth": False,
    }
    if method in ("POST", "PUT", "PATCH"):
        data["exampleBody"] = {"title": "Buy milk"}
    data.update(overrides)
    return data


def project_payload(**overrides) -> Dict[str, Any]:
    data = {
        "files": [
            {"path": "package.json", "content": '{"name": "todo-api"}'},
            {"path": "src/index.js", "content": "const express = require('express');\n"},
        ],
        "startCommand": "node src/index.js",
        "pm2Name": "todo-api",
        "allEndpoints": [endpoint_payload(), endpoint_payload("POST")],
    }
    data.update(overrides)
    return data
