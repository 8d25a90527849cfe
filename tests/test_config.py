"""Tests for shokamark.config module."""

import pytest
import yaml

from shokamark.config import (
    CONFIG_FILENAME,
    ENV_KDF_ITERATIONS,
    ContentConfig,
    ShokamarkConfig,
    config_to_dict,
    create_default_config,
    find_config_file,
    load_config,
)
from shokamark.crypto import ITERATIONS, ShokamarkError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep the KDF override out of tests unless set explicitly."""
    monkeypatch.delenv(ENV_KDF_ITERATIONS, raising=False)


class TestFindConfigFile:
    """Tests for find_config_file function."""

    def test_finds_config_in_current_dir(self, tmp_path):
        """Test finding config in current directory."""
        config_path = tmp_path / CONFIG_FILENAME
        config_path.write_text("content: {}")

        assert find_config_file(tmp_path) == config_path

    def test_finds_config_in_parent_dir(self, tmp_path):
        """Test finding config by traversing up."""
        config_path = tmp_path / CONFIG_FILENAME
        config_path.write_text("content: {}")
        subdir = tmp_path / "posts" / "2024"
        subdir.mkdir(parents=True)

        assert find_config_file(subdir) == config_path

    def test_returns_none_when_not_found(self, tmp_path):
        """Test returns None when no config found."""
        assert find_config_file(tmp_path) is None

    def test_starts_from_file_path(self, tmp_path):
        """Test starting from a file path uses parent directory."""
        config_path = tmp_path / CONFIG_FILENAME
        config_path.write_text("content: {}")
        post = tmp_path / "post.md"
        post.write_text("# Hi")

        assert find_config_file(post) == config_path


class TestLoadConfig:
    """Tests for load_config function."""

    def test_defaults(self, tmp_path):
        """Test defaults when no file exists."""
        config = load_config(start_path=tmp_path)

        assert config.config_path is None
        assert config.encryption.iterations == ITERATIONS
        assert config.content.enable_containers is True
        assert config.content.enable_encrypted_block is False
        assert config.content.allow_unencrypted_blocks is False
        assert config.content.strict_containers is False

    def test_loads_from_file(self, tmp_path):
        """Test loading config from file."""
        config_path = tmp_path / CONFIG_FILENAME
        config_path.write_text(
            """
content:
  enable_encrypted_block: true
  enable_ruby: false
encryption:
  iterations: 5000
template:
  button_text: "Open"
"""
        )

        config = load_config(config_path=config_path)

        assert config.content.enable_encrypted_block is True
        assert config.content.enable_ruby is False
        assert config.content.enable_spoiler is True
        assert config.encryption.iterations == 5000
        assert config.template.button_text == "Open"
        assert config.template.placeholder == "Enter password"
        assert config.config_path == config_path

    def test_env_override(self, tmp_path, monkeypatch):
        """Test environment variable overrides the file."""
        config_path = tmp_path / CONFIG_FILENAME
        config_path.write_text("encryption:\n  iterations: 5000\n")
        monkeypatch.setenv(ENV_KDF_ITERATIONS, "1234")

        assert load_config(config_path=config_path).encryption.iterations == 1234

    def test_env_override_must_be_integer(self, tmp_path, monkeypatch):
        """Test a non-numeric override is rejected."""
        monkeypatch.setenv(ENV_KDF_ITERATIONS, "lots")
        with pytest.raises(ShokamarkError, match=ENV_KDF_ITERATIONS):
            load_config(start_path=tmp_path)

    def test_missing_explicit_config_fails(self, tmp_path):
        """Test explicit config path that doesn't exist fails."""
        with pytest.raises(ShokamarkError, match="not found"):
            load_config(config_path=tmp_path / "nonexistent.yaml")

    def test_invalid_yaml_fails(self, tmp_path):
        """Test invalid YAML is reported."""
        config_path = tmp_path / CONFIG_FILENAME
        config_path.write_text("content: [unclosed")
        with pytest.raises(ShokamarkError, match="Invalid YAML"):
            load_config(config_path=config_path)

    def test_non_mapping_fails(self, tmp_path):
        """Test a top-level list is rejected."""
        config_path = tmp_path / CONFIG_FILENAME
        config_path.write_text("- a\n- b\n")
        with pytest.raises(ShokamarkError, match="mapping"):
            load_config(config_path=config_path)

    def test_unknown_key_fails(self, tmp_path):
        """Test typos in section keys are caught."""
        config_path = tmp_path / CONFIG_FILENAME
        config_path.write_text("content:\n  enable_rubby: true\n")
        with pytest.raises(ShokamarkError, match="enable_rubby"):
            load_config(config_path=config_path)

    def test_non_boolean_flag_fails(self, tmp_path):
        """Test content flags must be booleans."""
        config_path = tmp_path / CONFIG_FILENAME
        config_path.write_text('content:\n  enable_attrs: "yes please"\n')
        with pytest.raises(ShokamarkError, match="enable_attrs"):
            load_config(config_path=config_path)

    def test_zero_iterations_fails(self, tmp_path):
        """Test iteration count must be positive."""
        config_path = tmp_path / CONFIG_FILENAME
        config_path.write_text("encryption:\n  iterations: 0\n")
        with pytest.raises(ShokamarkError, match="positive"):
            load_config(config_path=config_path)


class TestCreateDefaultConfig:
    """Tests for create_default_config function."""

    def test_creates_loadable_file(self, tmp_path):
        """Test the generated file loads back to the defaults."""
        path = create_default_config(tmp_path)

        assert path == tmp_path / CONFIG_FILENAME
        config = load_config(config_path=path)
        assert config.content == ContentConfig()
        assert config.encryption.iterations == ITERATIONS

    def test_refuses_to_overwrite(self, tmp_path):
        """Test an existing file is not replaced."""
        create_default_config(tmp_path)
        with pytest.raises(ShokamarkError, match="already exists"):
            create_default_config(tmp_path)


class TestConfigToDict:
    """Tests for config_to_dict function."""

    def test_sections(self):
        """Test every section is present and YAML-serializable."""
        data = config_to_dict(ShokamarkConfig())

        assert set(data) == {"content", "encryption", "template", "config_path"}
        assert data["content"]["enable_attrs"] is True
        assert data["config_path"] is None
        assert yaml.safe_load(yaml.dump(data)) == data
