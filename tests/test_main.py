"""Tests for the CLI entry point and end-to-end pipeline."""

import io
import threading
import time

import yaml

from log_agent import main as agent_main
from log_agent import service
from log_agent.config import Config


class TestCLI:
    def test_parser_defaults(self):
        args = agent_main.build_cli_parser().parse_args([])
        assert args.config == "./config.yml"
        assert args.install_service is False

    def test_install_service(self, tmp_path, monkeypatch, capsys):
        target = tmp_path / "agent.service"
        monkeypatch.setattr(service, "SERVICE_PATH", str(target))

        assert agent_main.main(["--install-service"]) == 0
        assert target.exists()
        assert "sudo systemctl daemon-reload" in capsys.readouterr().out

    def test_install_service_unwritable(self, tmp_path, monkeypatch):
        monkeypatch.setattr(service, "SERVICE_PATH", str(tmp_path / "no" / "such" / "dir.service"))
        assert agent_main.main(["--install-service"]) == 1

    def test_invalid_config_exits_nonzero(self, tmp_path):
        path = tmp_path / "config.yml"
        path.write_text(yaml.safe_dump({
            "log_files": [str(tmp_path / "missing.log")],
            "endpoint": "http://localhost:4318/v1/logs",
        }))
        assert agent_main.main(["--config", str(path)]) == 1

    def test_bad_endpoint_exits_nonzero(self, tmp_path):
        log = tmp_path / "app.log"
        log.write_text("")
        path = tmp_path / "config.yml"
        path.write_text(yaml.safe_dump({"log_files": [str(log)], "endpoint": "localhost:4318"}))
        assert agent_main.main(["--config", str(path)]) == 1

    def test_missing_config_non_tty(self, tmp_path, monkeypatch):
        monkeypatch.setattr("sys.stdin", io.StringIO(""))
        assert agent_main.main(["--config", str(tmp_path / "config.yml")]) == 1

    def test_first_run_prompt_hits_eof(self, tmp_path, monkeypatch):
        class _Terminal(io.StringIO):
            def isatty(self):
                return True

        monkeypatch.setattr("sys.stdin", _Terminal(""))
        path = tmp_path / "config.yml"
        assert agent_main.main(["--config", str(path)]) == 1
        assert not path.exists()


class TestSignalHandlers:
    def test_handler_sets_event(self, monkeypatch):
        installed = {}
        monkeypatch.setattr(agent_main.signal, "signal", lambda sig, fn: installed.setdefault(sig, fn))
        shutdown = threading.Event()
        agent_main.install_signal_handlers(shutdown)

        assert agent_main.signal.SIGTERM in installed
        assert agent_main.signal.SIGINT in installed
        installed[agent_main.signal.SIGTERM](agent_main.signal.SIGTERM, None)
        assert shutdown.is_set()


class TestEndToEnd:
    def test_appended_lines_delivered_in_order(self, tmp_path, collector):
        log = tmp_path / "app.log"
        log.write_text("old content that must not ship\n")
        config = Config(log_files=(str(log),), endpoint=collector.url, poll_interval=0.05)
        shutdown = threading.Event()

        t = threading.Thread(target=agent_main.run_agent, args=(config, shutdown), daemon=True)
        t.start()
        time.sleep(0.3)

        with open(str(log), "a") as fh:
            for i in range(10):
                fh.write(f"2024-01-01 WARN line {i}\n")

        assert collector.wait_for(10)
        shutdown.set()
        t.join(timeout=5)

        assert not t.is_alive()
        assert collector.bodies() == [f"2024-01-01 WARN line {i}" for i in range(10)]
        record = collector.requests[0]["resourceLogs"][0]["scopeLogs"][0]["logRecords"][0]
        assert record["severityText"] == "WARN"
        assert record["severityNumber"] == 13

    def test_multiple_files(self, tmp_path, collector):
        a = tmp_path / "a.log"
        b = tmp_path / "b.log"
        a.write_text("")
        b.write_text("")
        config = Config(log_files=(str(a), str(b)), endpoint=collector.url, poll_interval=0.05)
        shutdown = threading.Event()

        agent = agent_main.Agent(config, shutdown)
        agent.start()
        time.sleep(0.3)

        for path, name in ((a, "a"), (b, "b")):
            with open(str(path), "a") as fh:
                for i in range(3):
                    fh.write(f"{name}{i}\n")

        assert collector.wait_for(6)
        agent.stop(grace=2.0)

        bodies = collector.bodies()
        assert [x for x in bodies if x.startswith("a")] == ["a0", "a1", "a2"]
        assert [x for x in bodies if x.startswith("b")] == ["b0", "b1", "b2"]
        files = {
            r["resourceLogs"][0]["scopeLogs"][0]["logRecords"][0]["attributes"][0]["value"]["stringValue"]
            for r in collector.requests
        }
        assert files == {str(a), str(b)}
