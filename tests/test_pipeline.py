"""
Integration-style tests for the build pipeline
LLM, host commands and HTTP are all faked; files land in tmp_path
"""
import json
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from vbs.orchestrator.context import BuildRequest, RunContext, derive_answers
from vbs.orchestrator.pipeline import BuildPipeline, static_root
from vbs.projects.registry import ProjectRegistry
from vbs.schemas import Analysis, GeneratedProject
from vbs.system.endpoint_tester import EndpointVerifier
from vbs.ui.prompts import DefaultAnswerProvider

from tests.conftest import FakeGateway, ScriptedExecutor, analysis_payload, endpoint_payload, ok, project_payload


def api_handler(request: httpx.Request) -> httpx.Response:
    if request.method == "POST":
        return httpx.Response(201, json={"id": 1})
    return httpx.Response(200, json=[])


def host_executor(*online: str) -> ScriptedExecutor:
    procs = [{"name": name, "pm2_env": {"status": "online"}} for name in online]
    return (ScriptedExecutor()
            .on("node --version", ok("v20.11.0"))
            .on("npm --version", ok("10.2.4"))
            .on("pm2 --version", ok("5.3.1"))
            .on("pm2 jlist", ok(json.dumps(procs))))


def make_pipeline(config, presenter, gateway, executor, tmp_path, **kwargs) -> BuildPipeline:
    config.server_ip = "203.0.113.7"
    cwd = tmp_path / "cwd"
    cwd.mkdir(exist_ok=True)
    return BuildPipeline(
        config,
        gateway,
        presenter,
        DefaultAnswerProvider(str(tmp_path / "www")),
        executor=executor,
        verifier=EndpointVerifier(delay=0, transport=httpx.MockTransport(api_handler)),
        cwd=str(cwd),
        **kwargs,
    )


class TestApiBuild:
    """End-to-end API build with every collaborator faked"""

    @pytest.mark.asyncio
    async def test_happy_path(self, tmp_path, config, presenter):
        gateway = FakeGateway([
            analysis_payload(),
            {"questions": [
                {"id": "cors_origin", "type": "input", "message": "CORS?", "default": "*"},
                {"id": "postgres_user", "type": "input", "message": "PostgreSQL user?", "default": "app"},
            ]},
            project_payload(allEndpoints=[
                endpoint_payload("GET", "/health"), endpoint_payload(), endpoint_payload("POST"),
            ]),
            "Both endpoints respond.",
        ])
        executor = host_executor("todo-api")
        pipeline = make_pipeline(config, presenter, gateway, executor, tmp_path, privileged=False)

        report = await pipeline.run(BuildRequest(prompt="todo REST API", project_type="api"))

        project_dir = (tmp_path / "www").resolve() / "todo-api"
        assert report.project_dir == str(project_dir)
        assert report.port == 3000
        assert report.processes_online == {"todo-api": True}
        assert (report.tests_passed, report.tests_total) == (3, 3)
        assert [w.phase for w in report.warnings] == ["firewall"]
        answered = presenter.messages("answers")[0]
        assert answered["cors_origin"] == "*"
        assert "postgres_user" not in answered

        assert (project_dir / "src" / "index.js").exists()
        assert executor.called("npm install --prefer-offline")
        assert executor.called("pm2 start src/index.js --name todo-api")
        assert not executor.called("ufw")
        assert not executor.called("sudo -u postgres")

        saved = json.loads((project_dir / "config.vbs").read_text())
        assert saved["backend"] is not None
        assert saved["frontend"] is None
        assert saved["backend"]["pm2Name"] == "todo-api"
        assert {"GET /health", "GET /api/todos", "POST /api/todos"} <= {
            f"{e['method']} {e['path']}" for e in saved["endpoints"]
        }
        assert not any(key.startswith("postgres") for key in saved["answers"])
        assert saved["answers"]["cors_origin"] == "*"
        assert "projectDir" not in saved["answers"]
        assert saved["server"]["ip"] == "203.0.113.7"

        registry = ProjectRegistry(config.registry_path)
        assert [p.name for p in await registry.list_projects()] == ["todo-api"]

        summary = (project_dir / "summary.txt").read_text()
        assert "http://203.0.113.7:3000/api/todos" in summary
        assert "Passed: 3/3" in summary
        assert "CURL EXAMPLES" in summary
        assert "AI NOTES\n  Both endpoints respond." in summary
        assert (tmp_path / "cwd" / "summary.txt").exists()
        assert len(gateway.calls) == 4

    @pytest.mark.asyncio
    async def test_generator_failure_aborts(self, tmp_path, config, presenter):
        from vbs.exceptions import JSONExtractionError

        gateway = FakeGateway([analysis_payload(), {"questions": []}, "no json here"])
        pipeline = make_pipeline(config, presenter, gateway, host_executor(), tmp_path, privileged=False)

        with pytest.raises(JSONExtractionError):
            await pipeline.run(BuildRequest(prompt="todo REST API"))
        assert not (tmp_path / "www" / "todo-api" / "config.vbs").exists()

    @pytest.mark.asyncio
    async def test_test_notes_failure_degrades(self, tmp_path, config, presenter):
        from vbs.exceptions import LLMTimeoutError

        gateway = FakeGateway([
            analysis_payload(), {"questions": []}, project_payload(), LLMTimeoutError("m", 1),
        ])
        pipeline = make_pipeline(config, presenter, gateway, host_executor("todo-api"), tmp_path, privileged=False)
        report = await pipeline.run(BuildRequest(prompt="todo REST API", extended_summary=True))

        summary = Path(report.summary_paths[0]).read_text()
        assert "AI NOTES" in summary
        assert "No notes available." in summary

    @pytest.mark.asyncio
    async def test_failed_cwd_summary_keeps_project_copy(self, tmp_path, config, presenter):
        gateway = FakeGateway([analysis_payload(), {"questions": []}, project_payload(), "Fine."])
        pipeline = make_pipeline(config, presenter, gateway, host_executor("todo-api"), tmp_path, privileged=False)
        pipeline.cwd = str(tmp_path / "missing")

        report = await pipeline.run(BuildRequest(prompt="todo REST API"))

        project_summary = (tmp_path / "www").resolve() / "todo-api" / "summary.txt"
        assert report.summary_paths == (str(project_summary),)
        assert project_summary.exists()
        persist = [w.message for w in report.warnings if w.phase == "persist"]
        assert persist == [f"summary.txt not written to {tmp_path / 'missing' / 'summary.txt'}"]


def launch_context(tmp_path, project_type, framework, is_static=False, **project) -> RunContext:
    analysis = Analysis.model_validate(analysis_payload(
        projectType=project_type, frontendFramework=framework, isStatic=is_static,
        suggestedProjectName="site",
    ))
    answers = derive_answers({}, project_type, analysis, str(tmp_path))
    return RunContext(
        request=BuildRequest(prompt="site", project_type=project_type),
        analysis=analysis,
        answers=answers,
        project_dir=str(tmp_path),
        project=GeneratedProject.model_validate({"files": [{"path": "index.html", "content": "x"}], **project}),
    )


def fake_nginx() -> MagicMock:
    nginx = MagicMock()
    nginx.configure_api_proxy = AsyncMock(return_value="/etc/nginx/sites-available/site")
    nginx.configure_static = AsyncMock(return_value="/etc/nginx/sites-available/site")
    nginx.configure_fullstack = AsyncMock(return_value="/etc/nginx/sites-available/site")
    return nginx


class TestLaunchDecisions:
    """Tests for which processes and nginx mode each project shape gets"""

    @pytest.mark.asyncio
    async def test_react_frontend_served_statically(self, tmp_path, config, presenter):
        (tmp_path / "dist").mkdir()
        executor, nginx = host_executor(), fake_nginx()
        pipeline = make_pipeline(config, presenter, FakeGateway(), executor, tmp_path, privileged=True, nginx=nginx)

        ctx = await pipeline.launch(launch_context(tmp_path, "frontend", "react", frontendFramework="react"))

        nginx.configure_static.assert_awaited_once_with("site", tmp_path / "dist")
        assert not executor.called("pm2 start")
        assert ctx.nginx_config == "/etc/nginx/sites-available/site"
        assert ctx.launches == ()

    @pytest.mark.asyncio
    async def test_nextjs_frontend_runs_under_pm2(self, tmp_path, config, presenter):
        executor, nginx = host_executor("site-front"), fake_nginx()
        pipeline = make_pipeline(config, presenter, FakeGateway(), executor, tmp_path, privileged=True, nginx=nginx)

        ctx = await pipeline.launch(launch_context(
            tmp_path, "frontend", "nextjs",
            frontendFramework="nextjs", startCommand="npm start", pm2Name="site-front",
        ))

        assert executor.called("pm2 start npm --name site-front")
        nginx.configure_api_proxy.assert_awaited_once_with("site", 3000)
        assert [launch.name for launch in ctx.launches] == ["site-front"]

    @pytest.mark.asyncio
    async def test_fullstack_nextjs_two_processes(self, tmp_path, config, presenter):
        executor, nginx = host_executor("site-api", "site-front"), fake_nginx()
        pipeline = make_pipeline(config, presenter, FakeGateway(), executor, tmp_path, privileged=True, nginx=nginx)

        ctx = await pipeline.launch(launch_context(
            tmp_path, "fullstack", "nextjs",
            frontendFramework="nextjs",
            backendStartCommand="node src/index.js", backendPm2Name="site-api",
            frontendStartCommand="npm start", frontendPm2Name="site-front",
        ))

        assert [launch.name for launch in ctx.launches] == ["site-api", "site-front"]
        nginx.configure_fullstack.assert_awaited_once_with("site", 3001, "nextjs", frontend_port=3000)
        assert executor.called(f"pm2 start src/index.js --name site-api --cwd {tmp_path / 'backend'}")

    @pytest.mark.asyncio
    async def test_nginx_skipped_without_root(self, tmp_path, config, presenter):
        nginx = fake_nginx()
        pipeline = make_pipeline(config, presenter, FakeGateway(), host_executor(), tmp_path,
                                 privileged=False, nginx=nginx)

        ctx = await pipeline.launch(launch_context(tmp_path, "frontend", None, is_static=True))

        nginx.configure_static.assert_not_awaited()
        assert [w.phase for w in ctx.warnings] == ["nginx"]

    @pytest.mark.asyncio
    async def test_frontend_has_no_endpoint_tests(self, tmp_path, config, presenter):
        pipeline = make_pipeline(config, presenter, FakeGateway(), host_executor(), tmp_path, privileged=False)
        ctx = launch_context(tmp_path, "frontend", "react")
        assert await pipeline.verify(ctx) is ctx

    def test_static_root_prefers_build_output(self, tmp_path):
        assert static_root(tmp_path) == tmp_path
        (tmp_path / "build").mkdir()
        assert static_root(tmp_path) == tmp_path / "build"


class TestDerivedAnswers:
    """Tests for answers the later phases rely on"""

    def test_fullstack_ports(self):
        analysis = Analysis.model_validate(analysis_payload(suggestedProjectName="shop"))
        answers = derive_answers({"backend_port": "4001"}, "fullstack", analysis, "/srv/shop")
        assert (answers["backendPort"], answers["frontendPort"], answers["port"]) == (4001, 3000, 4001)
        assert answers["projectName"] == "shop"

    def test_invalid_port_falls_back(self):
        analysis = Analysis.model_validate(analysis_payload())
        answers = derive_answers({"port": "99999", "project_name": "My API"}, "api", analysis, "/srv")
        assert answers["port"] == 3000
        assert answers["projectName"] == "my-api"
