"""
Unit Tests for the project registry and config.vbs store
"""
import json

import pytest

from vbs.exceptions import ProjectConfigError, ProjectNotFoundError
from vbs.projects.config_store import MAX_HISTORY, ConfigStore, redact_answers, resolve_project
from vbs.projects.registry import ProjectRegistry
from vbs.schemas import ModificationEntry, ProjectConfig, ProjectRecord


def record(name: str, directory: str = "/tmp/x") -> ProjectRecord:
    return ProjectRecord(name=name, dir=directory, type="api", stack=["Express"], port=3000)


class TestRegistry:
    """Tests for the registry document"""

    @pytest.mark.asyncio
    async def test_missing_file_is_empty(self, tmp_path):
        assert await ProjectRegistry(tmp_path / "projects.json").list_projects() == []

    @pytest.mark.asyncio
    async def test_register_replaces_same_name_and_inserts_first(self, tmp_path):
        registry = ProjectRegistry(tmp_path / "projects.json")
        await registry.register(record("a", "/one"))
        await registry.register(record("b"))
        await registry.register(record("a", "/two"))

        projects = await registry.list_projects()
        assert [(p.name, p.dir) for p in projects] == [("a", "/two"), ("b", "/tmp/x")]

        data = json.loads((tmp_path / "projects.json").read_text())
        assert data["projects"][0]["createdAt"]

    @pytest.mark.asyncio
    async def test_malformed_entries_skipped(self, tmp_path):
        path = tmp_path / "projects.json"
        path.write_text(json.dumps({"projects": [{"name": "broken"}, record("ok").to_json_dict()]}))
        assert [p.name for p in await ProjectRegistry(path).list_projects()] == ["ok"]

    @pytest.mark.asyncio
    async def test_invalid_document_treated_as_empty(self, tmp_path):
        path = tmp_path / "projects.json"
        path.write_text("{not json")
        assert await ProjectRegistry(path).list_projects() == []

    @pytest.mark.asyncio
    async def test_remove(self, tmp_path):
        registry = ProjectRegistry(tmp_path / "projects.json")
        await registry.register(record("a"))
        assert await registry.remove("a") is True
        assert await registry.remove("a") is False
        assert await registry.find("a") is None

    @pytest.mark.asyncio
    async def test_no_temp_files_left(self, tmp_path):
        registry = ProjectRegistry(tmp_path / "projects.json")
        await registry.register(record("a"))
        assert [p.name for p in tmp_path.iterdir()] == ["projects.json"]


class TestConfigStore:
    """Tests for config.vbs reads, updates and history"""

    @pytest.mark.asyncio
    async def test_missing_config_raises(self, tmp_path):
        with pytest.raises(ProjectConfigError) as exc_info:
            await ConfigStore().read(tmp_path)
        assert exc_info.value.code == "PROJECT_CONFIG_INVALID"

    @pytest.mark.asyncio
    async def test_invalid_config_raises(self, tmp_path):
        (tmp_path / "config.vbs").write_text(json.dumps({"type": "api"}))
        with pytest.raises(ProjectConfigError):
            await ConfigStore().read(tmp_path)

    @pytest.mark.asyncio
    async def test_history_prepended_and_capped(self, tmp_path):
        store = ConfigStore()
        await store.write(tmp_path, ProjectConfig(name="demo", type="api", files=["a.js"]))

        for i in range(MAX_HISTORY + 2):
            await store.append_history(tmp_path, ModificationEntry(request=f"change {i}"), files=["a.js", f"f{i}.js"])

        config = await store.read(tmp_path)
        assert len(config.modification_history) == MAX_HISTORY
        assert config.modification_history[0].request == f"change {MAX_HISTORY + 1}"
        assert config.files == ["a.js", f"f{MAX_HISTORY + 1}.js"]

    def test_redaction(self):
        redacted = redact_answers({
            "database_password": "s3cret",
            "jwt_secret": "",
            "DATABASE_URL": "postgresql://u:p@h/db",
            "port": 3000,
        })
        assert redacted == {"database_password": "[set]", "DATABASE_URL": "[set]", "port": 3000}


class TestResolveProject:
    """Tests for name resolution with the directory fallback"""

    @pytest.mark.asyncio
    async def test_registry_hit(self, tmp_path):
        registry = ProjectRegistry(tmp_path / "projects.json")
        await registry.register(record("demo", str(tmp_path)))
        found = await resolve_project("demo", registry, ConfigStore())
        assert found.dir == str(tmp_path)

    @pytest.mark.asyncio
    async def test_directory_fallback(self, tmp_path):
        project_dir = tmp_path / "shop"
        project_dir.mkdir()
        store = ConfigStore()
        await store.write(project_dir, ProjectConfig(name="shop", type="api", stack=["Express"]))

        found = await resolve_project(str(project_dir), ProjectRegistry(tmp_path / "projects.json"), store)

        assert found.name == "shop"
        assert found.dir == str(project_dir.resolve())
        # Fallback does not heal the registry
        assert await ProjectRegistry(tmp_path / "projects.json").list_projects() == []

    @pytest.mark.asyncio
    async def test_unknown_name(self, tmp_path):
        with pytest.raises(ProjectNotFoundError) as exc_info:
            await resolve_project("ghost-project", ProjectRegistry(tmp_path / "projects.json"), ConfigStore())
        assert exc_info.value.code == "PROJECT_NOT_FOUND"
