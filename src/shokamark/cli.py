"""Command-line interface for shokamark."""

import logging
from pathlib import Path

import click
import yaml

from . import __version__
from .config import (
    CONFIG_FILENAME,
    config_to_dict,
    create_default_config,
    find_config_file,
    load_config,
)
from .crypto import ShokamarkError
from .pipeline import build_file
from .template import write_assets
from .widget import unlock_html

MARKDOWN_EXTENSIONS = {".md", ".markdown"}
HTML_EXTENSIONS = {".html", ".htm"}


@click.group()
@click.version_option(version=__version__, prog_name="shokamark")
@click.option("-v", "--verbose", count=True, help="Increase log output (-vv for debug)")
def main(verbose):
    """Render Shoka-flavored Markdown, with password-protected content.

    \b
    Quick start:
      shokamark config init          # Create .shokamark.yaml
      shokamark build posts/ -r      # Render posts to _site/
      shokamark unlock _site/a.html  # Restore encrypted content offline
      shokamark assets -d static/    # Write the standalone runtime
    """
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose > 1:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def _load(config_path: str | None, start: str | None = None):
    try:
        return load_config(
            config_path=Path(config_path) if config_path else None,
            start_path=Path(start) if start else None,
        )
    except ShokamarkError as e:
        raise click.ClickException(str(e))


@main.command()
@click.argument("paths", nargs=-1, type=click.Path(exists=True))
@click.option("-r", "--recursive", is_flag=True, help="Process directories recursively")
@click.option(
    "-d",
    "--directory",
    "output_dir",
    type=click.Path(),
    help="Output directory (default: _site/)",
)
@click.option(
    "-c",
    "--config",
    "config_path",
    type=click.Path(exists=True),
    help="Config file path",
)
@click.option("--dry-run", is_flag=True, help="Show what would be done without changes")
def build(paths, recursive, output_dir, config_path, dry_run):
    """Render Markdown files to standalone HTML pages.

    Posts with a ``password`` in their front matter are encrypted as a
    whole; ``:::encrypted{password="..."}`` blocks are encrypted on their
    own when enabled in the config.

    \b
    Examples:
      shokamark build post.md
      shokamark build posts/ -r -d public/
    """
    if not paths:
        raise click.UsageError("No files or directories specified")

    config = _load(config_path, paths[0])

    if output_dir is None:
        output_dir = "_site"
        click.echo(f"Writing to {output_dir}/ (use -d to change)")
    output_base = Path(output_dir)

    files = _collect_files(paths, recursive, MARKDOWN_EXTENSIONS)
    if not files:
        click.echo("No Markdown files found")
        return

    built = 0
    failed = 0
    for input_path in files:
        output_path = _get_output_path(input_path, paths, output_base).with_suffix(
            ".html"
        )
        rel_input = _relative_path(input_path)
        rel_output = _relative_path(output_path)

        if dry_run:
            click.echo(f"Would build: {rel_input} -> {rel_output}")
            built += 1
            continue

        try:
            _, result = build_file(input_path, output_path, config)
        except ShokamarkError as e:
            click.echo(f"Error processing {rel_input}: {e}", err=True)
            failed += 1
            continue

        notes = []
        if result.encrypted_document:
            notes.append("post encrypted")
        if result.encrypted_blocks:
            notes.append(f"{result.encrypted_blocks} block(s) encrypted")
        if result.warnings:
            notes.append(f"{len(result.warnings)} warning(s)")
        suffix = f" ({', '.join(notes)})" if notes else ""
        click.echo(f"Built: {rel_input} -> {rel_output}{suffix}")
        built += 1

    click.echo(f"\n{built} file(s) built, {failed} failed")
    if failed:
        raise click.ClickException(f"{failed} file(s) could not be built")


@main.command()
@click.argument("paths", nargs=-1, type=click.Path(exists=True))
@click.option("-r", "--recursive", is_flag=True, help="Process directories recursively")
@click.option(
    "-d",
    "--directory",
    "output_dir",
    type=click.Path(),
    help="Output directory (default: _unlocked/)",
)
@click.option("-p", "--password", help="Decryption password (prompted if omitted)")
@click.option(
    "-c",
    "--config",
    "config_path",
    type=click.Path(exists=True),
    help="Config file path",
)
@click.option("--dry-run", is_flag=True, help="Show what would be done without changes")
def unlock(paths, recursive, output_dir, password, config_path, dry_run):
    """Decrypt encrypted posts and blocks in built HTML files.

    Content sealed with a different password is left encrypted.

    \b
    Examples:
      shokamark unlock _site/post.html
      shokamark unlock _site/ -r -d _unlocked/
    """
    if not paths:
        raise click.UsageError("No files or directories specified")

    config = _load(config_path, paths[0])

    if not password:
        password = click.prompt("Enter decryption password", hide_input=True)

    if output_dir is None:
        output_dir = "_unlocked"
        click.echo(f"Writing to {output_dir}/ (use -d to change)")
    output_base = Path(output_dir)

    files = _collect_files(paths, recursive, HTML_EXTENSIONS)
    if not files:
        click.echo("No HTML files found")
        return

    processed = 0
    skipped = 0
    for input_path in files:
        output_path = _get_output_path(input_path, paths, output_base)

        try:
            content = input_path.read_text(encoding="utf-8")
        except OSError as e:
            click.echo(f"Warning: Cannot read {input_path}: {e}", err=True)
            continue

        if "data-cipher" not in content:
            skipped += 1
            continue

        rel_input = _relative_path(input_path)
        rel_output = _relative_path(output_path)

        if dry_run:
            click.echo(f"Would unlock: {rel_input} -> {rel_output}")
            processed += 1
            continue

        try:
            unlocked = unlock_html(content, password, config.encryption.iterations)
        except ShokamarkError as e:
            click.echo(f"Error processing {rel_input}: {e}", err=True)
            continue

        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(unlocked, encoding="utf-8")
        click.echo(f"Unlocked: {rel_input} -> {rel_output}")
        processed += 1

    click.echo(f"\n{processed} file(s) unlocked, {skipped} skipped")


@main.command()
@click.option(
    "-d",
    "--directory",
    "output_dir",
    type=click.Path(),
    default=".",
    help="Directory to write shokamark.css and shokamark.js to",
)
@click.option(
    "-c",
    "--config",
    "config_path",
    type=click.Path(exists=True),
    help="Config file path",
)
def assets(output_dir, config_path):
    """Write the decryption runtime as standalone CSS and JavaScript.

    For sites that load the runtime themselves instead of inlining it
    into every page.
    """
    config = _load(config_path)
    css_path, js_path = write_assets(Path(output_dir), config)
    click.echo(f"Wrote: {css_path}")
    click.echo(f"Wrote: {js_path}")


@main.group()
def config():
    """Manage shokamark configuration."""
    pass


@config.command("init")
@click.option(
    "-d",
    "--directory",
    type=click.Path(),
    default=".",
    help="Directory to create config in",
)
def config_init(directory):
    """Create a new .shokamark.yaml configuration file."""
    try:
        config_path = create_default_config(Path(directory))
        click.echo(f"Created: {config_path}")
        click.echo("\nNext steps:")
        click.echo("  1. Enable the features you use in .shokamark.yaml")
        click.echo("  2. Add 'password: ...' to the front matter of private posts")
        click.echo("  3. Run: shokamark build <post.md>")
    except ShokamarkError as e:
        raise click.ClickException(str(e))


@config.command("show")
@click.option(
    "-c",
    "--config",
    "config_path",
    type=click.Path(exists=True),
    help="Config file path",
)
def config_show(config_path):
    """Display current configuration.

    Shows merged configuration from file, environment, and defaults.
    """
    cfg = _load(config_path)
    data = config_to_dict(cfg)
    click.echo(yaml.dump(data, default_flow_style=False, sort_keys=False))


@config.command("where")
@click.option(
    "-d",
    "--directory",
    type=click.Path(exists=True),
    help="Directory to search from",
)
def config_where(directory):
    """Show which config file would be used.

    Searches up the directory tree for .shokamark.yaml.
    """
    start = Path(directory) if directory else Path.cwd()
    config_path = find_config_file(start)

    if config_path:
        click.echo(f"Config file: {config_path}")
    else:
        click.echo(f"No {CONFIG_FILENAME} found (searched from {start})")


def _collect_files(paths: tuple, recursive: bool, extensions: set[str]) -> list[Path]:
    """Collect files with the given extensions from paths."""
    files = []

    for path_str in paths:
        path = Path(path_str)

        if path.is_file():
            if path.suffix.lower() in extensions:
                files.append(path)
        elif path.is_dir():
            for ext in extensions:
                if recursive:
                    files.extend(path.rglob(f"*{ext}"))
                else:
                    files.extend(path.glob(f"*{ext}"))

    return sorted(set(files))


def _get_output_path(input_path: Path, source_paths: tuple, output_base: Path) -> Path:
    """Determine output path for a file.

    Files found under a source directory keep their relative location.
    """
    input_resolved = input_path.resolve()

    for source in source_paths:
        source_path = Path(source).resolve()

        if source_path.is_file():
            if input_resolved == source_path:
                return output_base / input_path.name
        elif source_path.is_dir():
            try:
                rel = input_resolved.relative_to(source_path)
                return output_base / rel
            except ValueError:
                continue

    return output_base / input_path.name


def _relative_path(path: Path) -> str:
    """Get a relative path for display."""
    try:
        return str(path.relative_to(Path.cwd()))
    except ValueError:
        return str(path)


if __name__ == "__main__":
    main()
