"""Test the command line interface"""

import logging
from collections.abc import Iterator
from pathlib import Path

import pytest

from sitesnap.config import get_settings
from sitesnap.main import (
    EXIT_FAILED,
    EXIT_OK,
    EXIT_USAGE,
    build_parser,
    config_from_args,
    main,
)
from sitesnap.snapshot.models import ArchiveFormat, BuildPolicy
from sitesnap.snapshot.profiles import DEFAULT_EXCLUDES


@pytest.fixture(autouse=True)
def _reset_logging_state() -> Iterator[None]:
    yield
    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()


class TestConfigFromArgs:
    def test_command_line_options(self, tmp_path: Path):
        args = build_parser().parse_args(
            [
                "run",
                "--source",
                str(tmp_path / "site"),
                "--dest",
                str(tmp_path / "out"),
                "--prefix",
                "nightly",
                "--exclude",
                "*.tmp",
                "--build",
                "make",
                "--build-required",
                "--format",
                "tar.gz",
                "--keep",
                "5",
            ]
        )

        config = config_from_args(args, get_settings())

        assert config.source_dir == (tmp_path / "site").resolve()
        assert config.backup_root == (tmp_path / "out").resolve()
        assert config.prefix == "nightly"
        assert "*.tmp" in config.exclude_patterns
        assert set(DEFAULT_EXCLUDES) <= set(config.exclude_patterns)
        assert config.build_policy is BuildPolicy.REQUIRED
        assert config.archive_format is ArchiveFormat.TAR_GZ
        assert config.max_snapshots == 5

    def test_no_default_excludes(self, tmp_path: Path):
        args = build_parser().parse_args(
            ["run", "--no-default-excludes", "--exclude", "*.tmp"]
        )

        config = config_from_args(args, get_settings())

        assert config.exclude_patterns == ("*.tmp",)

    def test_profile_values_are_used(self, tmp_path: Path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        args = build_parser().parse_args(["run", "--profile", "deploy"])

        config = config_from_args(args, get_settings())

        assert config.prefix == "cpanel-backup"
        assert config.collect_subdir == "dist"


class TestMain:
    def test_run_creates_snapshot(self, make_tree, backup_root, capsys):
        source = make_tree({"a.txt": "a", "node_modules/x.js": "x"})

        code = main(["run", "--source", str(source), "--dest", str(backup_root)])

        assert code == EXIT_OK
        folders = list(backup_root.iterdir())
        assert len(folders) == 1
        assert folders[0].name.startswith("backup_")
        assert (folders[0] / "changelog.txt").is_file()
        assert "done" in capsys.readouterr().out

    def test_failed_snapshot_exit_code(self, tmp_path, backup_root):
        code = main(
            ["run", "--source", str(tmp_path / "missing"), "--dest", str(backup_root)]
        )

        assert code == EXIT_FAILED

    def test_required_build_failure(self, make_tree, backup_root):
        source = make_tree({"a.txt": "a"})

        code = main(
            [
                "run",
                "--source",
                str(source),
                "--dest",
                str(backup_root),
                "--build",
                "exit 1",
                "--build-required",
            ]
        )

        assert code == EXIT_FAILED

    def test_unknown_profile_is_usage_error(self, capsys):
        code = main(["run", "--profile", "does-not-exist"])

        assert code == EXIT_USAGE
        assert "Unknown profile" in capsys.readouterr().out

    def test_list_and_profiles(self, make_tree, backup_root, capsys):
        source = make_tree({"a.txt": "a"})
        main(["run", "--source", str(source), "--dest", str(backup_root)])
        capsys.readouterr()

        assert main(["list", "--dest", str(backup_root)]) == EXIT_OK
        assert "backup_" in capsys.readouterr().out

        assert main(["profiles"]) == EXIT_OK
        assert "deploy" in capsys.readouterr().out

    def test_list_empty_root(self, tmp_path, capsys):
        assert main(["list", "--dest", str(tmp_path / "none")]) == EXIT_OK
        assert "No snapshots" in capsys.readouterr().out

    def test_command_is_required(self):
        with pytest.raises(SystemExit) as exc:
            main([])

        assert exc.value.code == 2
