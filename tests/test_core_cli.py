"""Tests for CloudupCore loading and the typer CLI."""

import json
import textwrap

import pytest
from typer.testing import CliRunner

from cloudup.cli import app
from cloudup.core import CloudupCore
from cloudup.errors import ConfigurationError
from cloudup.report import TaskStatus
from tests.fakes import FakeWorld

runner = CliRunner()

MAIN = textwrap.dedent(
    """
    from tests.fakes import FakeResource, FakeWorld

    cloud = FakeWorld()
    cluster_tags = {"KubernetesCluster": "example.com"}

    _db = FakeResource(name="db", size=2)
    app = FakeResource(name="app", size=1, depends_on=[_db])
    workers = [FakeResource(name=f"worker-{i}", size=1, depends_on=[app]) for i in range(2)]
    """
)


@pytest.fixture
def main_file(temp_dir):
    path = temp_dir / "main.py"
    path.write_text(MAIN)
    return path


def write_main(temp_dir, source):
    path = temp_dir / "main.py"
    path.write_text(textwrap.dedent(source))
    return path


class TestLoad:

    def test_collects_declared_and_referenced_tasks(self, main_file):
        state = CloudupCore().load(main_file)

        assert [task.key for task in state.tasks] == [
            "FakeResource/app",
            "FakeResource/worker-0",
            "FakeResource/worker-1",
            "FakeResource/db",
        ]
        assert isinstance(state.cloud, FakeWorld)
        assert state.cluster_tags == {"KubernetesCluster": "example.com"}

    def test_missing_file(self, temp_dir):
        with pytest.raises(FileNotFoundError):
            CloudupCore().load(temp_dir / "nope.py")

    def test_module_without_tasks(self, temp_dir):
        path = write_main(temp_dir, "x = 1\n")
        with pytest.raises(ConfigurationError, match="No tasks found"):
            CloudupCore().load(path)

    def test_graph(self, main_file):
        graph = CloudupCore().graph(main_file)
        assert len(graph) == 4
        assert [task.key for task in graph.roots()] == ["FakeResource/db"]


class TestPipelines:

    @pytest.mark.asyncio
    async def test_apply_against_injected_cloud(self, main_file):
        world = FakeWorld()

        report = await CloudupCore(max_concurrency=2).apply(main_file, cloud=world)

        assert report.success
        assert set(world.resources) == {"db", "app", "worker-0", "worker-1"}

    @pytest.mark.asyncio
    async def test_plan_does_not_render(self, main_file):
        world = FakeWorld()

        report = await CloudupCore().plan(main_file, cloud=world)

        assert report.dry_run
        assert world.renders() == []
        assert report.summary()[TaskStatus.CREATED.value] == 4

    @pytest.mark.asyncio
    async def test_apply_requires_a_cloud(self, temp_dir):
        path = write_main(
            temp_dir,
            """
            from tests.fakes import FakeResource
            db = FakeResource(name="db", size=1)
            """,
        )
        with pytest.raises(ConfigurationError, match="does not define a 'cloud'"):
            await CloudupCore().apply(path)

    @pytest.mark.asyncio
    async def test_render_writes_terraform_json(self, main_file, temp_dir):
        output = temp_dir / "out" / "kubernetes.tf.json"

        report = await CloudupCore().render(main_file, output=output)

        assert report.success
        config = json.loads(output.read_text())
        assert set(config["resource"]["fake_resource"]) == {"db", "app", "worker-0", "worker-1"}
        assert config["resource"]["fake_resource"]["app"]["depends_on"] == ["${fake_resource.db.id}"]

    @pytest.mark.asyncio
    async def test_render_default_output_from_settings(self, main_file, temp_dir, monkeypatch):
        from cloudup.settings import reload_settings

        output = temp_dir / "from-env.tf.json"
        monkeypatch.setenv("CLOUDUP_IAC_OUTPUT", str(output))
        reload_settings()

        await CloudupCore().render(main_file)

        assert output.exists()


class TestCLI:

    def test_graph_command(self, main_file):
        result = runner.invoke(app, ["graph", str(main_file)])

        assert result.exit_code == 0, result.output
        assert "FakeResource/worker-0" in result.output
        assert "4 tasks" in result.output

    def test_apply_command(self, main_file):
        result = runner.invoke(app, ["apply", str(main_file), "--concurrency", "2"])

        assert result.exit_code == 0, result.output
        assert "converged" in result.output

    def test_apply_dry_run(self, main_file):
        result = runner.invoke(app, ["apply", str(main_file), "--dry-run"])

        assert result.exit_code == 0, result.output
        assert "Dry run" in result.output

    def test_apply_failure_exits_non_zero(self, temp_dir):
        path = write_main(
            temp_dir,
            """
            from tests.fakes import FakeResource, FakeWorld
            cloud = FakeWorld()
            incomplete = FakeResource(name="incomplete")
            """,
        )

        result = runner.invoke(app, ["apply", str(path)])

        assert result.exit_code == 1
        assert "Convergence failed" in result.output

    def test_configuration_error_exits_non_zero(self, temp_dir):
        path = write_main(temp_dir, "x = 1\n")

        result = runner.invoke(app, ["apply", str(path)])

        assert result.exit_code == 1
        assert "No tasks found" in result.output

    def test_render_command(self, main_file, temp_dir):
        output = temp_dir / "cluster.tf.json"

        result = runner.invoke(app, ["render", str(main_file), "--out", str(output)])

        assert result.exit_code == 0, result.output
        assert output.exists()

    def test_missing_file(self, temp_dir):
        result = runner.invoke(app, ["graph", str(temp_dir / "missing.py")])
        assert result.exit_code == 1

    def test_version(self):
        from cloudup import __version__

        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert __version__ in result.output
