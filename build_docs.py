#!/usr/bin/env python3
"""
Build script for the multi-language documentation site.

Runs DocFX against the primary language tree and against one merged working
tree per translated language, then fixes the source links DocFX writes into
the translated pages.

Usage:
    python build_docs.py                 # Interactive menu
    python build_docs.py --build-all     # Build every language with API docs
    python build_docs.py --root docs     # Documentation root other than cwd
"""

import argparse
import json
import logging
import os
import shutil
import subprocess
import sys
import webbrowser
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Callable, Iterator, Optional
from urllib.parse import urlsplit, urlunsplit

from bs4 import BeautifulSoup
from jinja2 import Environment, FileSystemLoader


logger = logging.getLogger(__name__)


# --- Configuration ---

LANGUAGES_FILE = "languages.json"
BUILD_CONFIG_FILE = "docfx.json"
MANUAL_DIR = "manual"
INDEX_PAGE = "index.md"
API_DIR = "api"
API_MANIFEST = ".manifest"
SITE_DIR = "_site"
SCRATCH_SUFFIX = "_tmp"
TOC_FILES = {'toc.md', 'toc.yml'}

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"
NOT_TRANSLATED_TEMPLATE = "not_translated.md"

DEFAULT_PORT = 8080
PROGRESS_EVERY = 50


class DocsBuildError(Exception):
    """Base class for errors that abort a documentation build."""

    exit_code = 1


class ConfigurationError(DocsBuildError):
    """The language list or a build configuration is missing or invalid."""


class ExternalToolError(DocsBuildError):
    """The documentation tool exited with a non-zero status."""

    def __init__(self, command: list, returncode: int):
        self.command = command
        self.returncode = returncode
        self.exit_code = returncode
        super().__init__(f"{' '.join(command)} failed with exit code {returncode}")


@dataclass(frozen=True)
class LanguageDescriptor:
    """One entry of languages.json."""
    code: str
    name: str
    enabled: bool = True
    primary: bool = False
    not_translated_message: str = ""


@dataclass
class BuildContext:
    """Everything a build step needs to know, passed explicitly."""
    root: Path
    languages: list
    docfx: str = "docfx"
    port: int = DEFAULT_PORT
    templates_dir: Path = field(default=TEMPLATES_DIR)

    @property
    def primary(self) -> LanguageDescriptor:
        return next(lang for lang in self.languages if lang.primary)

    @property
    def secondary_languages(self) -> list:
        """Enabled non-primary languages, in declaration order."""
        return [lang for lang in self.languages if lang.enabled and not lang.primary]

    def language(self, code: str) -> LanguageDescriptor:
        for lang in self.languages:
            if lang.code == code:
                return lang
        raise ConfigurationError(f"Unknown language: {code}")

    def source_dir(self, code: str) -> Path:
        return self.root / code

    def scratch_dir(self, code: str) -> Path:
        return self.root / f"{code}{SCRATCH_SUFFIX}"

    @property
    def site_dir(self) -> Path:
        return self.root / SITE_DIR

    @property
    def primary_config(self) -> Path:
        return self.source_dir(self.primary.code) / BUILD_CONFIG_FILE


def flag(entry: dict, key: str, default: bool) -> bool:
    value = entry.get(key, default)
    if not isinstance(value, bool):
        raise ConfigurationError(
            f"'{key}' of language {entry.get('code')!r} must be true or false, got {value!r}"
        )
    return value


def read_page(path: Path) -> str:
    """Read a UTF-8 source or output page."""
    try:
        return path.read_text(encoding='utf-8')
    except UnicodeDecodeError as e:
        raise ConfigurationError(f"{path} is not valid UTF-8: {e}") from e


def load_languages(path: Path) -> list:
    """Load and validate the language list from a JSON file."""
    path = Path(path)
    if not path.is_file():
        raise ConfigurationError(f"Language configuration not found: {path}")

    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in {path}: {e}") from e

    if isinstance(data, dict):
        data = data.get('languages')
    if not isinstance(data, list) or not data:
        raise ConfigurationError(f"{path} must contain a non-empty list of languages")

    languages = []
    seen = set()
    for entry in data:
        if not isinstance(entry, dict):
            raise ConfigurationError(f"Language entries must be objects, got: {entry!r}")
        code = entry.get('code')
        if not isinstance(code, str) or not code.strip():
            raise ConfigurationError(f"Language entry without a code: {entry!r}")
        code = code.strip()
        if code in seen:
            raise ConfigurationError(f"Duplicate language code: {code}")
        seen.add(code)

        languages.append(LanguageDescriptor(
            code=code,
            name=entry.get('name') or code.upper(),
            enabled=flag(entry, 'enabled', True),
            primary=flag(entry, 'primary', False),
            not_translated_message=entry.get('not_translated_message') or "",
        ))

    primaries = [lang.code for lang in languages if lang.primary]
    if len(primaries) != 1:
        raise ConfigurationError(
            f"Exactly one primary language is required, found {len(primaries)}"
            + (f" ({', '.join(primaries)})" if primaries else "")
        )

    return languages


# --- Selection ---

class BuildAction(Enum):
    """What the user asked for."""
    BUILD_PRIMARY = "primary"
    BUILD_LANGUAGE = "language"
    BUILD_ALL = "all"
    RUN_SERVER = "serve"
    CANCEL = "cancel"


BUILD_ACTIONS = {BuildAction.BUILD_PRIMARY, BuildAction.BUILD_LANGUAGE, BuildAction.BUILD_ALL}


@dataclass(frozen=True)
class BuildSelection:
    action: BuildAction
    language: Optional[str] = None
    include_api: bool = False

    @property
    def is_build(self) -> bool:
        return self.action in BUILD_ACTIONS


def batch_selection() -> BuildSelection:
    """Selection used by --build-all: everything, API docs included."""
    return BuildSelection(BuildAction.BUILD_ALL, include_api=True)


def resolve_selection(text: str, context: BuildContext) -> Optional[BuildSelection]:
    """Map one line of menu input to a selection, or None if unrecognized."""
    choice = text.strip().lower()
    if not choice:
        return None

    if choice == context.primary.code.lower():
        return BuildSelection(BuildAction.BUILD_PRIMARY)
    for lang in context.secondary_languages:
        if choice == lang.code.lower():
            return BuildSelection(BuildAction.BUILD_LANGUAGE, language=lang.code)
    if choice == 'all':
        return BuildSelection(BuildAction.BUILD_ALL)
    if choice == 'serve':
        return BuildSelection(BuildAction.RUN_SERVER)
    if choice in ('cancel', 'q'):
        return BuildSelection(BuildAction.CANCEL)
    return None


def format_menu(context: BuildContext) -> str:
    primary = context.primary
    lines = ["", "Which documentation do you want to build?", ""]
    lines.append(f"  {primary.code:<8} {primary.name} (primary)")
    for lang in context.secondary_languages:
        lines.append(f"  {lang.code:<8} {lang.name}")
    lines.append(f"  {'all':<8} All languages")
    lines.append(f"  {'serve':<8} Serve the built site locally")
    lines.append(f"  {'cancel':<8} Do nothing")
    return "\n".join(lines)


def prompt_selection(context: BuildContext, input_fn: Callable[[str], str] = input) -> BuildSelection:
    """Ask until the answer names a known option. EOF cancels."""
    while True:
        print(format_menu(context))
        try:
            answer = input_fn("\nChoice: ")
        except EOFError:
            return BuildSelection(BuildAction.CANCEL)

        selection = resolve_selection(answer, context)
        if selection is None:
            print(f"Unrecognized choice: {answer.strip()!r}")
            continue
        break

    if not selection.is_build:
        return selection

    try:
        answer = input_fn("Generate API reference? [y/N] ")
    except EOFError:
        answer = ""
    include_api = answer.strip().lower() in ('y', 'yes')
    return BuildSelection(selection.action, language=selection.language, include_api=include_api)


# --- Merge ---

def create_jinja_env(templates_dir: Path) -> Environment:
    """Jinja2 environment for markdown snippets (no HTML escaping)."""
    return Environment(
        loader=FileSystemLoader(templates_dir),
        autoescape=False,
        keep_trailing_newline=True,
    )


def render_not_translated(env: Environment, language: LanguageDescriptor) -> str:
    template = env.get_template(NOT_TRANSLATED_TEMPLATE)
    return template.render(message=language.not_translated_message, language=language)


def iter_manual_pages(manual_dir: Path) -> Iterator[Path]:
    """Markdown pages under the manual subsection, TOC excluded."""
    if not manual_dir.is_dir():
        return
    for page in sorted(manual_dir.rglob("*.md")):
        if page.is_file() and page.name.lower() not in TOC_FILES:
            yield page


def mark_untranslated(page: Path, warning: str) -> bool:
    """
    Replace the first empty line of a page with the warning block.

    Returns True if the page was changed. Pages without an empty line are
    left alone.
    """
    lines = read_page(page).splitlines(keepends=True)
    for i, line in enumerate(lines):
        if line.rstrip("\r\n"):
            continue
        lines[i] = warning if warning.endswith("\n") else warning + "\n"
        page.write_text("".join(lines), encoding='utf-8')
        return True
    return False


def patch_build_config(source: Path, dest: Path, primary_code: str, language_code: str) -> dict:
    """
    Copy a docfx.json, pointing build.dest at the language's output folder.

    Only path components equal to the primary code are replaced, so
    "../_site/en" becomes "../_site/fr" while "../_site/entry" is untouched.
    """
    try:
        with open(source, 'r', encoding='utf-8') as f:
            config = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Cannot read build configuration {source}: {e}") from e

    build = config.get('build') if isinstance(config, dict) else None
    if not isinstance(build, dict) or not isinstance(build.get('dest'), str):
        raise ConfigurationError(f"{source} has no build.dest output path")

    parts = PurePosixPath(build['dest'].replace("\\", "/")).parts
    build['dest'] = str(PurePosixPath(*[
        language_code if part == primary_code else part for part in parts
    ]))

    with open(dest, 'w', encoding='utf-8') as f:
        json.dump(config, f, indent=2, ensure_ascii=False)
        f.write("\n")
    return config


def merge_language(context: BuildContext, language: LanguageDescriptor) -> Path:
    """Create the working tree for a secondary language and return its path."""
    primary = context.primary
    source = context.source_dir(primary.code)
    translated = context.source_dir(language.code)
    scratch = context.scratch_dir(language.code)

    if not source.is_dir():
        raise ConfigurationError(f"Primary documentation tree not found: {source}")

    if scratch.exists():
        shutil.rmtree(scratch)
    shutil.copytree(source, scratch)
    logger.debug(f"[{language.code}] Copied {source.name}/ to {scratch.name}/")

    env = create_jinja_env(context.templates_dir)
    warning = render_not_translated(env, language)
    marked = sum(
        1 for page in iter_manual_pages(scratch / MANUAL_DIR)
        if mark_untranslated(page, warning)
    )
    logger.debug(f"[{language.code}] Marked {marked} page(s) as not translated")

    translated_index = translated / INDEX_PAGE
    if translated_index.is_file():
        shutil.copy2(translated_index, scratch / INDEX_PAGE)
    else:
        logger.warning(f"[{language.code}] No translated {INDEX_PAGE}, using {primary.code} version")

    translated_manual = translated / MANUAL_DIR
    if translated_manual.is_dir():
        shutil.copytree(translated_manual, scratch / MANUAL_DIR, dirs_exist_ok=True)
    else:
        logger.warning(f"[{language.code}] No translated {MANUAL_DIR}/ folder, using {primary.code} version")

    patch_build_config(
        source / BUILD_CONFIG_FILE,
        scratch / BUILD_CONFIG_FILE,
        primary.code,
        language.code,
    )
    return scratch


@contextmanager
def working_tree(context: BuildContext, language: LanguageDescriptor) -> Iterator[Path]:
    """Merged tree for one build attempt, removed afterwards whatever happens."""
    scratch = context.scratch_dir(language.code)
    try:
        yield merge_language(context, language)
    finally:
        if scratch.exists():
            shutil.rmtree(scratch)
            logger.debug(f"[{language.code}] Removed {scratch.name}/")


# --- DocFX ---

class DocTool:
    """Thin wrapper around the docfx executable."""

    def __init__(self, context: BuildContext, runner: Callable = subprocess.run):
        self.context = context
        self.runner = runner

    def _run(self, args: list, cwd: Optional[Path] = None) -> int:
        command = [self.context.docfx, *[str(a) for a in args]]
        logger.debug(f"Running: {' '.join(command)}")
        try:
            result = self.runner(command, cwd=cwd)
        except FileNotFoundError as e:
            raise ExternalToolError(command, 127) from e
        if result.returncode != 0:
            raise ExternalToolError(command, result.returncode)
        return result.returncode

    def generate_api_metadata(self) -> None:
        logger.info("Generating API metadata...")
        self._run(['metadata', self.context.primary_config])

    def remove_api_metadata(self) -> int:
        """Delete previously generated API pages listed in api/.manifest."""
        api_dir = self.context.source_dir(self.context.primary.code) / API_DIR
        manifest = api_dir / API_MANIFEST
        if not manifest.is_file():
            return 0

        try:
            with open(manifest, 'r', encoding='utf-8') as f:
                entries = json.load(f)
        except ValueError as e:
            raise ConfigurationError(f"Invalid API manifest {manifest}: {e}") from e

        if isinstance(entries, dict):
            values = list(entries.values())
        elif isinstance(entries, list):
            values = entries
        else:
            raise ConfigurationError(f"API manifest {manifest} must be an object or a list")

        names = set()
        for value in values:
            if isinstance(value, str):
                names.add(value)
            elif isinstance(value, list) and all(isinstance(v, str) for v in value):
                names.update(value)
            else:
                raise ConfigurationError(f"Unexpected entry in API manifest {manifest}: {value!r}")

        api_root = api_dir.resolve()
        removed = 0
        for name in sorted(names):
            target = api_dir / name
            if not target.resolve().is_relative_to(api_root):
                logger.warning(f"Not removing {name}, it is outside {api_dir}")
                continue
            if target.is_file():
                target.unlink()
                removed += 1
        manifest.unlink()
        logger.info(f"Removed {removed} generated API file(s)")
        return removed

    def build(self, config_path: Path) -> None:
        logger.info(f"Building {config_path.parent.name}/...")
        self._run(['build', config_path])

    def serve(self) -> int:
        """Serve _site/ until interrupted. Returns the tool's exit status."""
        site_dir = self.context.site_dir
        if not site_dir.is_dir():
            raise ConfigurationError(f"Nothing to serve, {site_dir} does not exist. Build first.")

        url = f"http://localhost:{self.context.port}/"
        print(f"Serving at {url}")
        print("Press Ctrl+C to stop")
        webbrowser.open(url)
        try:
            self._run(['serve', '--port', self.context.port], cwd=site_dir)
        except KeyboardInterrupt:
            print("\nStopping...")
        return 0


# --- Link post-processing ---

LINK_ATTRIBUTES = (
    ('meta', 'content'),
    ('a', 'href'),
)


def replace_path_segment(url: str, old: str, new: str) -> str:
    """Swap whole path components of a URL, keeping query and fragment."""
    parts = urlsplit(url)
    segments = parts.path.split('/')
    if old not in segments:
        return url
    path = '/'.join(new if s == old else s for s in segments)
    return urlunsplit(parts._replace(path=path))


def rewrite_page_links(html: str, old: str, new: str) -> tuple[str, int]:
    """Rewrite meta content and anchor hrefs of one page. Returns (html, count)."""
    soup = BeautifulSoup(html, 'html.parser')
    count = 0
    for tag_name, attr in LINK_ATTRIBUTES:
        for tag in soup.find_all(tag_name, attrs={attr: True}):
            value = tag[attr]
            updated = replace_path_segment(value, old, new)
            if updated != value:
                tag[attr] = updated
                count += 1
    if not count:
        return html, 0
    return str(soup), count


def rewrite_site_links(context: BuildContext, language: LanguageDescriptor) -> int:
    """
    Point source links of a translated site at the permanent folders.

    Pages backed by a file under <code>/ link to <code>/, everything else fell
    back to primary content and links to the primary folder. Returns the
    number of pages rewritten.
    """
    output_dir = context.site_dir / language.code
    scratch_name = context.scratch_dir(language.code).name
    translated = context.source_dir(language.code)
    primary_code = context.primary.code

    if not output_dir.is_dir():
        logger.warning(f"[{language.code}] No output in {output_dir}, skipping link rewrite")
        return 0

    pages = sorted(output_dir.rglob("*.html"))
    changed = 0
    for i, page in enumerate(pages, 1):
        relative = page.relative_to(output_dir).with_suffix(".md")
        target = language.code if (translated / relative).is_file() else primary_code

        html = read_page(page)
        updated, count = rewrite_page_links(html, scratch_name, target)
        if count:
            page.write_text(updated, encoding='utf-8')
            changed += 1
            logger.debug(f"[{language.code}] {relative.with_suffix('.html')}: {count} link(s) -> {target}/")

        if i % PROGRESS_EVERY == 0:
            logger.info(f"[{language.code}] Processed {i}/{len(pages)} pages")

    logger.info(f"[{language.code}] Fixed links in {changed} of {len(pages)} pages")
    return changed


# --- Build ---

def build_secondary(context: BuildContext, tool: DocTool, language: LanguageDescriptor) -> None:
    """Merge, build and post-process one translated language."""
    logger.info(f"[{language.code}] Building {language.name}")
    with working_tree(context, language) as scratch:
        tool.build(scratch / BUILD_CONFIG_FILE)
        rewrite_site_links(context, language)


def run(context: BuildContext, selection: BuildSelection, tool: DocTool) -> int:
    """Carry out a selection. Returns the process exit status."""
    if selection.action is BuildAction.CANCEL:
        print("Cancelled.")
        return 0

    if selection.action is BuildAction.RUN_SERVER:
        return tool.serve()

    if selection.include_api:
        tool.generate_api_metadata()
    else:
        tool.remove_api_metadata()

    print("Generating documentation...")

    if selection.action in (BuildAction.BUILD_PRIMARY, BuildAction.BUILD_ALL):
        logger.info(f"[{context.primary.code}] Building {context.primary.name}")
        tool.build(context.primary_config)

    if selection.action is BuildAction.BUILD_LANGUAGE:
        build_secondary(context, tool, context.language(selection.language))
    elif selection.action is BuildAction.BUILD_ALL:
        for language in context.secondary_languages:
            build_secondary(context, tool, language)

    print(f"\nSite built to {context.site_dir}/")
    return 0


# --- Main ---

def setup_logging(debug: bool = False) -> None:
    """Console logging on stderr; --debug also shows commands and per-page changes."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format='%(levelname)s: %(message)s',
        stream=sys.stderr,
    )


def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Build the multi-language documentation site")
    parser.add_argument('--build-all', '-a', action='store_true',
                        help='Build every language including API docs, without prompting')
    parser.add_argument('--root', '-r', default=os.environ.get('DOCS_ROOT', '.'),
                        help='Documentation root (default: $DOCS_ROOT or current directory)')
    parser.add_argument('--config', '-c', default=None,
                        help=f'Language list (default: <root>/{LANGUAGES_FILE})')
    parser.add_argument('--docfx', default=os.environ.get('DOCFX', 'docfx'),
                        help='docfx executable (default: $DOCFX or docfx)')
    parser.add_argument('--port', '-p', type=int, default=DEFAULT_PORT,
                        help='Port for the local server')
    parser.add_argument('--debug', action='store_true', help='Verbose logging')
    return parser.parse_args(argv)


def main(argv: Optional[list] = None, input_fn: Callable[[str], str] = input,
         runner: Callable = subprocess.run) -> int:
    args = parse_args(argv)
    setup_logging(debug=args.debug)

    root = Path(args.root).resolve()
    config_path = Path(args.config) if args.config else root / LANGUAGES_FILE

    try:
        context = BuildContext(
            root=root,
            languages=load_languages(config_path),
            docfx=args.docfx,
            port=args.port,
        )
        if args.build_all:
            selection = batch_selection()
        else:
            selection = prompt_selection(context, input_fn)
        return run(context, selection, DocTool(context, runner=runner))
    except DocsBuildError as e:
        logger.error(str(e))
        return e.exit_code


if __name__ == "__main__":
    raise SystemExit(main())
