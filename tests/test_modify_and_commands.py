"""
Tests for ``vbs modify``, ``vbs list`` and ``vbs open``
"""
import json

import pytest

from vbs.exceptions import ProjectNotFoundError
from vbs.orchestrator.commands import list_projects, open_project
from vbs.orchestrator.modify import ModifyFlow, install_dirs, plan_line_counts
from vbs.projects.config_store import ConfigStore
from vbs.projects.registry import ProjectRegistry
from vbs.schemas import BackendConfig, FileRecord, ModificationResult, ProjectConfig, ProjectRecord
from vbs.ui.prompts import DefaultAnswerProvider

from tests.conftest import FakeGateway, ScriptedExecutor, fail


class DecliningProvider(DefaultAnswerProvider):
    async def ask_text(self, message, min_length=0, default=None):
        return "add a health route"

    async def confirm(self, message, default=True):
        return False


async def seed_project(tmp_path, config, project_type="api", **overrides):
    project_dir = tmp_path / "demo"
    (project_dir / "src").mkdir(parents=True)
    (project_dir / "src" / "index.js").write_text("line1\nline2\n")

    project = ProjectConfig(
        name="demo",
        type=project_type,
        complexity="simple",
        stack=["Express"],
        backend=BackendConfig(port=3000, pm2_name="demo"),
        files=["src/index.js"],
        **overrides,
    )
    await ConfigStore().write(project_dir, project)
    registry = ProjectRegistry(config.registry_path)
    await registry.register(ProjectRecord(name="demo", dir=str(project_dir), type=project_type, port=3000))
    return project_dir, registry


def modification(**overrides) -> dict:
    data = {
        "summary": "Added a health route",
        "files": [
            {"path": "src/index.js", "content": "line1\nline2\nline3\n"},
            {"path": "src/health.js", "content": "module.exports = 1;"},
        ],
        "restartRequired": True,
        "rebuildRequired": False,
    }
    data.update(overrides)
    return data


class TestModifyFlow:
    """Tests for the modification flow"""

    @pytest.mark.asyncio
    async def test_unknown_project_writes_nothing(self, tmp_path, config, presenter, executor, monkeypatch):
        monkeypatch.chdir(tmp_path)
        gateway = FakeGateway()
        flow = ModifyFlow(config, gateway, presenter, DefaultAnswerProvider(), executor=executor)

        with pytest.raises(ProjectNotFoundError):
            await flow.run("ghost-project", "add a route")

        assert gateway.calls == []
        assert executor.calls == []
        assert not (tmp_path / "ghost-project").exists()

    @pytest.mark.asyncio
    async def test_apply_restart_and_history(self, tmp_path, config, presenter, executor):
        project_dir, registry = await seed_project(tmp_path, config)
        gateway = FakeGateway([modification()])
        flow = ModifyFlow(config, gateway, presenter, DefaultAnswerProvider(), executor=executor, registry=registry)

        outcome = await flow.run("demo", "add a health route")

        assert outcome.applied is True
        assert sorted(outcome.written) == ["src/health.js", "src/index.js"]
        assert outcome.restarted == ["demo"]
        assert executor.called("pm2 restart demo")
        assert (project_dir / "src" / "health.js").exists()
        assert "src/index.js  +1 lines" in presenter.messages("success")
        assert "src/health.js  +1 lines (new file)" in presenter.messages("success")

        saved = json.loads((project_dir / "config.vbs").read_text())
        assert saved["modificationHistory"][0]["request"] == "add a health route"
        assert saved["files"] == ["src/index.js", "src/health.js"]

    @pytest.mark.asyncio
    async def test_declined_confirmation_writes_nothing(self, tmp_path, config, presenter, executor):
        project_dir, registry = await seed_project(tmp_path, config)
        flow = ModifyFlow(config, FakeGateway([modification()]), presenter, DecliningProvider(),
                          executor=executor, registry=registry)

        outcome = await flow.run("demo")

        assert outcome.applied is False
        assert not (project_dir / "src" / "health.js").exists()
        assert (project_dir / "src" / "index.js").read_text() == "line1\nline2\n"

    @pytest.mark.asyncio
    async def test_package_json_change_installs_in_its_directory(self, tmp_path, config, presenter, executor):
        project_dir, registry = await seed_project(tmp_path, config)
        gateway = FakeGateway([modification(
            files=[{"path": "package.json", "content": "{}"}], restartRequired=False,
        )])
        flow = ModifyFlow(config, gateway, presenter, DefaultAnswerProvider(), executor=executor, registry=registry)

        outcome = await flow.run("demo", "add dotenv")

        assert executor.called("npm install --prefer-offline")
        assert executor.cwds[0] == str(project_dir)
        assert outcome.restarted == []
        assert not executor.called("pm2 restart")

    @pytest.mark.asyncio
    async def test_failed_restart_is_a_warning(self, tmp_path, config, presenter):
        project_dir, registry = await seed_project(tmp_path, config)
        executor = ScriptedExecutor().on("pm2 restart", fail("process not found"))
        flow = ModifyFlow(config, FakeGateway([modification()]), presenter, DefaultAnswerProvider(),
                          executor=executor, registry=registry)

        outcome = await flow.run("demo", "add a health route")

        assert outcome.restarted == []
        assert [w.phase for w in outcome.warnings] == ["restart"]

    @pytest.mark.asyncio
    async def test_missing_directory(self, tmp_path, config, presenter):
        registry = ProjectRegistry(config.registry_path)
        await registry.register(ProjectRecord(name="gone", dir=str(tmp_path / "gone"), type="api"))
        flow = ModifyFlow(config, FakeGateway(), presenter, DefaultAnswerProvider(), registry=registry)

        with pytest.raises(ProjectNotFoundError) as exc_info:
            await flow.run("gone", "anything")
        assert "directory is missing" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_plan_line_counts(self, tmp_path):
        (tmp_path / "a.js").write_text("1\n2")
        result = ModificationResult(summary="s", files=[
            FileRecord(path="./a.js", content="1\n2\n3"),
            FileRecord(path="b.js", content="x"),
            FileRecord(path="../evil.js", content="x"),
        ])
        assert await plan_line_counts(tmp_path, result) == {"a.js": (2, 3), "b.js": (None, 1)}

    def test_install_dirs(self, tmp_path):
        dirs = install_dirs(tmp_path, ["backend/package.json", "frontend/src/App.jsx", "frontend/package.json"])
        assert dirs == [tmp_path / "backend", tmp_path / "frontend"]


class TestCommands:
    """Tests for list and open"""

    @pytest.mark.asyncio
    async def test_list(self, tmp_path, config, presenter):
        await seed_project(tmp_path, config)
        records = await list_projects(ProjectRegistry(config.registry_path), presenter)
        assert [r.name for r in records] == ["demo"]
        assert presenter.messages("projects")[0][0].name == "demo"

    @pytest.mark.asyncio
    async def test_open_shows_config(self, tmp_path, config, presenter):
        await seed_project(tmp_path, config)
        loaded = await open_project("demo", ProjectRegistry(config.registry_path), ConfigStore(), presenter)

        assert loaded.name == "demo"
        record, shown, dir_exists = presenter.messages("project_info")[0]
        assert dir_exists is True
        assert shown.backend.pm2_name == "demo"

    @pytest.mark.asyncio
    async def test_open_with_missing_directory(self, tmp_path, config, presenter):
        registry = ProjectRegistry(config.registry_path)
        await registry.register(ProjectRecord(name="gone", dir=str(tmp_path / "gone"), type="api"))

        assert await open_project("gone", registry, ConfigStore(), presenter) is None
        assert presenter.messages("project_info")[0][2] is False

    @pytest.mark.asyncio
    async def test_open_with_broken_config_degrades(self, tmp_path, config, presenter):
        project_dir, registry = await seed_project(tmp_path, config)
        (project_dir / "config.vbs").write_text("{broken")

        assert await open_project("demo", registry, ConfigStore(), presenter) is None
        assert presenter.messages("warning")

    @pytest.mark.asyncio
    async def test_open_unknown(self, tmp_path, config, presenter):
        with pytest.raises(ProjectNotFoundError):
            await open_project("ghost-project", ProjectRegistry(config.registry_path), ConfigStore(), presenter)
