#!/usr/bin/env python3
"""
Report which manual pages have been translated for each language.

Compares the primary manual/ folder with <code>/manual/ for every enabled
secondary language in languages.json.

Usage:
    python scripts/translation_status.py

    # Other documentation root, machine-readable output:
    python scripts/translation_status.py --root docs --json
"""

import argparse
import json
import sys
from pathlib import Path

import frontmatter

# Allow running from a checkout without installing
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from build_docs import (  # noqa: E402
    LANGUAGES_FILE,
    MANUAL_DIR,
    BuildContext,
    ConfigurationError,
    iter_manual_pages,
    load_languages,
)


def page_title(path: Path) -> str:
    """Front matter title, else first heading, else the file name."""
    post = frontmatter.load(path)
    title = post.get('title')
    if title:
        return str(title)
    for line in post.content.splitlines():
        if line.startswith('# '):
            return line[2:].strip()
    return path.stem


def collect_status(context: BuildContext) -> dict:
    primary_manual = context.source_dir(context.primary.code) / MANUAL_DIR
    pages = [
        (page.relative_to(primary_manual).as_posix(), page_title(page))
        for page in iter_manual_pages(primary_manual)
    ]

    languages = []
    for lang in context.secondary_languages:
        translated_manual = context.source_dir(lang.code) / MANUAL_DIR
        missing = [path for path, _ in pages if not (translated_manual / path).is_file()]
        languages.append({
            'code': lang.code,
            'name': lang.name,
            'translated': len(pages) - len(missing),
            'missing': missing,
        })

    return {
        'primary': context.primary.code,
        'pages': [{'path': path, 'title': title} for path, title in pages],
        'languages': languages,
    }


def print_report(status: dict) -> None:
    titles = {p['path']: p['title'] for p in status['pages']}
    total = len(status['pages'])
    print(f"{total} manual page(s) in {status['primary']}/{MANUAL_DIR}/\n")
    for lang in status['languages']:
        print(f"{lang['code']} ({lang['name']}): {lang['translated']}/{total} translated")
        for path in lang['missing']:
            print(f"  missing: {path} ({titles[path]})")


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Report translation coverage of the manual"
    )
    parser.add_argument(
        "--root", "-r",
        default=".",
        help="Documentation root (default: current directory)"
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the report as JSON"
    )

    args = parser.parse_args(argv)

    root = Path(args.root).resolve()
    try:
        context = BuildContext(root=root, languages=load_languages(root / LANGUAGES_FILE))
    except ConfigurationError as e:
        print(f"Error: {e}")
        return 1

    status = collect_status(context)
    if args.json:
        print(json.dumps(status, indent=2, ensure_ascii=False))
    else:
        print_report(status)

    complete = all(not lang['missing'] for lang in status['languages'])
    return 0 if complete else 1


if __name__ == "__main__":
    raise SystemExit(main())
