"""Tests for the command line entry point."""

import asyncio
import sys

import main
from searchengine.utils.config import Config, CrawlerConfig, LoggingConfig, MonitoringConfig


class FinishedSupervisor:
    """A bootstrap run whose only crawler is already done."""

    def __init__(self, config):
        self.config = config
        self.restart_required = True
        self.started = None
        self.closed = False

    async def initialize(self):
        pass

    async def start_crawlers(self, count):
        self.started = count
        return []

    async def wait(self):
        pass

    async def close(self):
        self.closed = True


class TestCrawlerApp:
    def test_app_built_before_the_loop_runs(self, monkeypatch, database_config):
        supervisors = []

        def make_supervisor(config):
            supervisors.append(FinishedSupervisor(config))
            return supervisors[-1]

        monkeypatch.setattr(main, "CrawlSupervisor", make_supervisor)
        config = Config(
            crawler=CrawlerConfig(number_of_crawlers=3),
            database=database_config,
            logging=LoggingConfig(),
            monitoring=MonitoringConfig(),
        )

        app = main.CrawlerApp()
        # Standard input closes at once
        monkeypatch.setattr(app, "_start_stdin_reader", lambda: app._lines.put_nowait(None))
        assert asyncio.run(app.run(config)) == 0

        assert supervisors[0].started == 3
        assert supervisors[0].closed


class TestMain:
    def test_crawl_without_config_writes_template(self, monkeypatch, tmp_path):
        path = tmp_path / "config.yaml"
        monkeypatch.setattr(sys, "argv", ["searchengine", "--config", str(path), "crawl"])

        assert main.main() == 1
        assert path.exists()

    def test_search_with_invalid_config(self, monkeypatch, tmp_path, capsys):
        path = tmp_path / "config.yaml"
        path.write_text("cache:\n  size: 1\n")
        monkeypatch.setattr(sys, "argv", ["searchengine", "--config", str(path), "search", "widgets"])

        assert main.main() == 1
        assert "Configuration error" in capsys.readouterr().out
