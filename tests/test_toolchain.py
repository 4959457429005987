"""Tests for toolchain discovery and the child-process environment."""
import os

import pytest

from scan_pipeline.errors import ConfigurationError, ErrorCategory
from scan_pipeline.models import ToolchainEnvironment
from scan_pipeline.toolchain import find_toolchain_marker, resolve_toolchain


class TestFindToolchainMarker:

    def test_finds_marker_under_share_alicevision(self, toolchain_search_root):
        marker = find_toolchain_marker(toolchain_search_root)
        assert marker == (
            toolchain_search_root / "meshroom" / "aliceVision" / "share" / "aliceVision" / "config.ocio"
        )

    def test_ignores_marker_in_unrelated_directory(self, tmp_path):
        (tmp_path / "ocio").mkdir()
        (tmp_path / "ocio" / "config.ocio").write_text("")
        assert find_toolchain_marker(tmp_path) is None

    def test_missing_search_root(self, tmp_path):
        assert find_toolchain_marker(tmp_path / "nope") is None

    def test_picks_first_match_in_path_order(self, tmp_path):
        for release in ("Meshroom-2023", "Meshroom-2021"):
            share = tmp_path / release / "aliceVision" / "share" / "aliceVision"
            share.mkdir(parents=True)
            (share / "config.ocio").write_text("")

        marker = find_toolchain_marker(tmp_path)
        assert "Meshroom-2021" in marker.parts


class TestResolveToolchain:

    def test_root_is_three_levels_above_marker(self, toolchain_search_root):
        toolchain = resolve_toolchain(toolchain_search_root)

        assert toolchain.root == toolchain_search_root / "meshroom" / "aliceVision"
        assert toolchain.bin_dir == toolchain.root / "bin"
        assert toolchain.lib_dir == toolchain.root / "lib"
        assert toolchain.sensor_db.name == "cameraSensors.db"
        assert toolchain.sensor_db.exists()

    def test_missing_marker_is_configuration_error_with_listing(self, tmp_path):
        (tmp_path / "opt" / "something").mkdir(parents=True)
        (tmp_path / "opt" / "something" / "README").write_text("hi")

        with pytest.raises(ConfigurationError) as excinfo:
            resolve_toolchain(tmp_path / "opt")

        error = excinfo.value
        assert error.category == ErrorCategory.CONFIGURATION
        assert "config.ocio" in error.message
        assert "README" in error.details["listing"]

    def test_missing_sensor_db_is_not_fatal(self, tmp_path):
        share = tmp_path / "av" / "share" / "aliceVision"
        share.mkdir(parents=True)
        (share / "config.ocio").write_text("")

        toolchain = resolve_toolchain(tmp_path)
        assert toolchain.root == tmp_path / "av"
        assert not toolchain.sensor_db.exists()


class TestSubprocessEnv:

    def test_sets_toolchain_variables(self, tmp_path):
        root = tmp_path / "av"
        toolchain = ToolchainEnvironment(root=root, config_file=root / "share/aliceVision/config.ocio")

        env = toolchain.subprocess_env({"PATH": "/usr/bin", "HOME": "/root"})

        assert env["ALICEVISION_ROOT"] == str(root)
        assert env["ALICEVISION_SENSOR_DB"] == str(root / "share" / "aliceVision" / "cameraSensors.db")
        assert env["OCIO"] == str(toolchain.config_file)
        assert env["PATH"] == f"{root / 'bin'}{os.pathsep}/usr/bin"
        assert env["LD_LIBRARY_PATH"] == str(root / "lib")
        assert env["HOME"] == "/root"

    def test_does_not_touch_process_environment(self, tmp_path, monkeypatch):
        monkeypatch.delenv("ALICEVISION_ROOT", raising=False)
        monkeypatch.delenv("OCIO", raising=False)
        before = dict(os.environ)

        toolchain = ToolchainEnvironment(root=tmp_path, config_file=tmp_path / "config.ocio")
        env = toolchain.subprocess_env()

        assert env["ALICEVISION_ROOT"] == str(tmp_path)
        assert dict(os.environ) == before
        assert "ALICEVISION_ROOT" not in os.environ

    def test_executable_prefers_installed_binary(self, tmp_path):
        (tmp_path / "bin").mkdir()
        (tmp_path / "bin" / "aliceVision_meshing").write_text("")
        toolchain = ToolchainEnvironment(root=tmp_path, config_file=tmp_path / "config.ocio")

        assert toolchain.executable("aliceVision_meshing") == str(tmp_path / "bin" / "aliceVision_meshing")
        assert toolchain.executable("aliceVision_cameraInit") == "aliceVision_cameraInit"
