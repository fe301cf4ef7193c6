"""
Tests for the command-line interface.
"""

import json
from pathlib import Path

import pytest

from certwatch import __version__
from certwatch.cli import create_parser, main
from certwatch.config import StorageConfig, SystemConfig, save_config_to_file
from certwatch.domain_resolver import DomainResolver
from certwatch.models import Entry, EntryData, LeafCert, Match, Subject
from certwatch.storage import EmbeddedStorage
from certwatch.wire import encode_entry


@pytest.fixture
def config_path(tmp_path: Path) -> Path:
    path = tmp_path / "config.json"
    config = SystemConfig(storage=StorageConfig(embedded_path=tmp_path / "monitor.db"))
    save_config_to_file(config, path)
    return path


def open_store(config_path: Path) -> EmbeddedStorage:
    return EmbeddedStorage(config_path.parent / "monitor.db", DomainResolver())


class TestParser:
    """Tests for argument parsing."""

    def test_no_command_prints_help(self, capsys) -> None:
        assert main([]) == 0
        assert "usage: certwatch" in capsys.readouterr().out

    def test_version(self, capsys) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main(["--version"])
        assert exc_info.value.code == 0
        assert __version__ in capsys.readouterr().out

    @pytest.mark.parametrize(
        "argv",
        [
            ["run"],
            ["monitor", "example.com"],
            ["remove", "example.com"],
            ["domains"],
            ["matches"],
            ["matches", "example.com"],
            ["seed", "domains.csv"],
            ["config", "show"],
        ],
    )
    def test_every_command_has_a_handler(self, argv: list[str]) -> None:
        args = create_parser().parse_args(argv)
        assert callable(args.func)


class TestWatchListCommands:
    """Tests for monitor, remove, domains and seed."""

    def test_monitor_then_list(self, config_path: Path, capsys) -> None:
        assert main(["monitor", "Example.COM", "-c", str(config_path)]) == 0
        assert main(["domains", "-c", str(config_path)]) == 0

        out = capsys.readouterr().out
        assert "Monitoring example.com" in out
        assert out.strip().splitlines()[-1] == "example.com"

    def test_monitor_rejects_subdomain(self, config_path: Path, capsys) -> None:
        assert main(["monitor", "www.example.com", "-c", str(config_path)]) == 1
        assert "Invalid domain" in capsys.readouterr().err
        assert open_store(config_path).domains() == set()

    def test_remove(self, config_path: Path) -> None:
        main(["monitor", "example.com", "-c", str(config_path)])

        assert main(["remove", "example.com", "-c", str(config_path)]) == 0
        assert open_store(config_path).domains() == set()

    def test_seed_skips_comments_and_reports_invalid(self, config_path: Path, tmp_path: Path, capsys) -> None:
        seed = tmp_path / "domains.csv"
        seed.write_text(
            "# watched domains\nexample.com\n\nexample.org  # marketing\nwww.example.net\n",
            encoding="utf-8",
        )

        assert main(["seed", str(seed), "-c", str(config_path)]) == 1

        captured = capsys.readouterr()
        assert "Added 2 domain(s), skipped 1" in captured.out
        assert "www.example.net" in captured.err
        assert open_store(config_path).domains() == {"example.com", "example.org"}

    def test_seed_missing_file(self, config_path: Path, tmp_path: Path) -> None:
        assert main(["seed", str(tmp_path / "absent.csv"), "-c", str(config_path)]) == 1

    def test_unusable_storage_is_reported(self, tmp_path: Path, capsys) -> None:
        path = tmp_path / "config.json"
        config = SystemConfig(storage=StorageConfig(embedded_path=tmp_path / "missing" / "monitor.db"))
        save_config_to_file(config, path)

        assert main(["domains", "-c", str(path)]) == 1
        assert "Storage error" in capsys.readouterr().err


class TestMatchesCommand:
    """Tests for matches."""

    def test_prints_json_lines(self, config_path: Path, capsys) -> None:
        storage = open_store(config_path)
        storage.monitor("example.com")
        entry = Entry(
            data=EntryData(cert_index=11, leaf_cert=LeafCert(subject=Subject(cn="www.example.com")))
        )
        storage.is_monitored(entry)
        storage.record(Match(entry=entry, entry_string=encode_entry(entry)))

        assert main(["matches", "example.com", "-c", str(config_path)]) == 0

        lines = capsys.readouterr().out.strip().splitlines()
        assert len(lines) == 1
        assert json.loads(lines[0])["data"]["cert_index"] == 11

    def test_unknown_domain_prints_nothing(self, config_path: Path, capsys) -> None:
        assert main(["matches", "example.com", "-c", str(config_path)]) == 0
        assert capsys.readouterr().out == ""


class TestConfigCommand:
    """Tests for config init, show and validate."""

    def test_init_creates_file_once(self, tmp_path: Path, capsys) -> None:
        path = tmp_path / "nested" / "config.json"

        assert main(["config", "init", "--path", str(path)]) == 0
        assert path.exists()
        assert main(["config", "init", "--path", str(path)]) == 1
        assert main(["config", "init", "--path", str(path), "--force"]) == 0

    def test_validate(self, config_path: Path) -> None:
        assert main(["config", "validate", "--path", str(config_path)]) == 0

    def test_validate_reports_invalid_file(self, tmp_path: Path, capsys) -> None:
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"storage": {"backend": "bolt"}}), encoding="utf-8")

        assert main(["config", "validate", "--path", str(path)]) == 2
        assert "Configuration error" in capsys.readouterr().err

    def test_show_masks_password(self, tmp_path: Path, capsys) -> None:
        path = tmp_path / "config.json"
        save_config_to_file(SystemConfig(storage=StorageConfig(redis_password="hunter2")), path)

        assert main(["config", "show", "--path", str(path)]) == 0

        out = capsys.readouterr().out
        assert "hunter2" not in out
        assert '"redis_password": "***"' in out
