"""Configuration management for shokamark.

Handles loading .shokamark.yaml files with directory traversal,
environment variable overrides, and default values.
"""

import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from .crypto import ITERATIONS, ShokamarkError

CONFIG_FILENAME = ".shokamark.yaml"
ENV_KDF_ITERATIONS = "SHOKAMARK_KDF_ITERATIONS"


@dataclass
class ContentConfig:
    """Which Shoka syntax features are active."""

    enable_containers: bool = True
    enable_hexo_tags: bool = True
    enable_effects: bool = True  # ~sub~, ^sup^, ++ins++, ==mark==
    enable_spoiler: bool = True
    enable_ruby: bool = True
    enable_attrs: bool = True
    enable_math: bool = True
    enable_encrypted_block: bool = False
    allow_unencrypted_blocks: bool = False
    strict_containers: bool = False


@dataclass
class EncryptionConfig:
    """Key derivation settings shared by build and browser runtime."""

    iterations: int = ITERATIONS


@dataclass
class TemplateConfig:
    """Decryption widget texts and colors."""

    placeholder: str = "Enter password"
    button_text: str = "Unlock"
    error_text: str = "Incorrect password"
    locked_label: str = "Locked content"
    post_title: str = "This post is encrypted"
    post_description: str = "Enter the password to read it."
    color_primary: str = "#4CAF50"
    color_error: str = "#dc3545"


@dataclass
class ShokamarkConfig:
    """Complete shokamark configuration."""

    content: ContentConfig = field(default_factory=ContentConfig)
    encryption: EncryptionConfig = field(default_factory=EncryptionConfig)
    template: TemplateConfig = field(default_factory=TemplateConfig)
    config_path: Path | None = None  # Path where config was loaded from

    def validate(self) -> None:
        """Validate configuration.

        Raises:
            ShokamarkError: If configuration is invalid.
        """
        if not isinstance(self.encryption.iterations, int) or isinstance(
            self.encryption.iterations, bool
        ):
            raise ShokamarkError("encryption.iterations must be an integer")
        if self.encryption.iterations < 1:
            raise ShokamarkError("encryption.iterations must be positive")

        for f in fields(ContentConfig):
            value = getattr(self.content, f.name)
            if not isinstance(value, bool):
                raise ShokamarkError(f"content.{f.name} must be true or false")


def find_config_file(start_path: Path | None = None) -> Path | None:
    """Find .shokamark.yaml by traversing up from start_path.

    Args:
        start_path: Directory to start searching from. Defaults to cwd.

    Returns:
        Path to config file if found, None otherwise.
    """
    if start_path is None:
        start_path = Path.cwd()
    else:
        start_path = Path(start_path).resolve()

    # If start_path is a file, use its parent directory
    if start_path.is_file():
        start_path = start_path.parent

    current = start_path
    while True:
        config_path = current / CONFIG_FILENAME
        if config_path.is_file():
            return config_path

        parent = current.parent
        if parent == current:
            return None
        current = parent


def load_config(
    config_path: Path | None = None,
    start_path: Path | None = None,
) -> ShokamarkConfig:
    """Load configuration from file, environment, and defaults.

    Priority (highest to lowest):
    1. Environment variables (SHOKAMARK_KDF_ITERATIONS)
    2. Config file (.shokamark.yaml)
    3. Defaults

    Args:
        config_path: Explicit path to config file. If None, searches.
        start_path: Directory to start config file search from.

    Returns:
        Loaded and validated configuration.
    """
    config = ShokamarkConfig()

    if config_path is not None:
        config_path = Path(config_path)
        if not config_path.is_file():
            raise ShokamarkError(f"Config file not found: {config_path}")
    else:
        config_path = find_config_file(start_path)

    if config_path is not None:
        config = _load_config_file(config_path)
        config.config_path = config_path

    env_iterations = os.environ.get(ENV_KDF_ITERATIONS)
    if env_iterations:
        try:
            config.encryption.iterations = int(env_iterations)
        except ValueError as e:
            raise ShokamarkError(
                f"{ENV_KDF_ITERATIONS} must be an integer, got {env_iterations!r}"
            ) from e

    config.validate()
    return config


def _load_section(cls, data: Any, name: str):
    """Build a section dataclass from a YAML mapping, rejecting unknown keys."""
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ShokamarkError(f"'{name}' must be a mapping")

    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ShokamarkError(f"Unknown key(s) in '{name}': {', '.join(unknown)}")
    return cls(**data)


def _load_config_file(config_path: Path) -> ShokamarkConfig:
    """Load configuration from a YAML file.

    Raises:
        ShokamarkError: If file cannot be read or parsed.
    """
    try:
        with open(config_path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ShokamarkError(f"Invalid YAML in {config_path}: {e}") from e
    except OSError as e:
        raise ShokamarkError(f"Cannot read config file {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ShokamarkError(f"Config file {config_path} must contain a mapping")

    return ShokamarkConfig(
        content=_load_section(ContentConfig, data.get("content"), "content"),
        encryption=_load_section(
            EncryptionConfig, data.get("encryption"), "encryption"
        ),
        template=_load_section(TemplateConfig, data.get("template"), "template"),
        config_path=config_path,
    )


def create_default_config(path: Path | None = None) -> Path:
    """Create a default .shokamark.yaml config file.

    Args:
        path: Directory to create config in. Defaults to cwd.

    Returns:
        Path to created config file.

    Raises:
        ShokamarkError: If file already exists or cannot be written.
    """
    if path is None:
        path = Path.cwd()
    else:
        path = Path(path)

    config_path = path / CONFIG_FILENAME

    if config_path.exists():
        raise ShokamarkError(f"Config file already exists: {config_path}")

    config_content = f"""# shokamark configuration
# Post passwords live in each post's front matter, not here.

content:
  enable_containers: true        # :::note, +++collapse, ;;;tabs
  enable_hexo_tags: true         # {{% links %}}, {{% media audio %}}
  enable_effects: true           # ~sub~ ^sup^ ++ins++ ==mark==
  enable_spoiler: true           # !!spoiler!!
  enable_ruby: true              # {{base^annotation}}
  enable_attrs: true             # {{.class #id key=value}}
  enable_math: true              # $inline$ and $$block$$ math
  enable_encrypted_block: false  # :::encrypted{{password="..."}}
  allow_unencrypted_blocks: false
  strict_containers: false       # fail on unterminated containers

encryption:
  iterations: {ITERATIONS}       # PBKDF2 rounds (browser uses the same value)

template:
  placeholder: "Enter password"
  button_text: "Unlock"
  error_text: "Incorrect password"
  post_title: "This post is encrypted"
  post_description: "Enter the password to read it."
"""

    try:
        config_path.write_text(config_content, encoding="utf-8")
    except OSError as e:
        raise ShokamarkError(f"Cannot write config file: {e}") from e

    return config_path


def config_to_dict(config: ShokamarkConfig) -> dict[str, Any]:
    """Convert config to dictionary for display."""
    return {
        "content": asdict(config.content),
        "encryption": asdict(config.encryption),
        "template": asdict(config.template),
        "config_path": str(config.config_path) if config.config_path else None,
    }
