"""CLI interface for exportdiver."""

from __future__ import annotations

import logging
import sys
from functools import wraps
from pathlib import Path

import click

from . import __version__
from .config import DATA_DIR
from .errors import ExportDiverError
from .exporter import format_timestamp
from .models import ProgressEvent


def _library():
    from .library import ConversationLibrary

    return ConversationLibrary()


def _handle_errors(f):
    """Surface library errors as clean CLI failures."""

    @wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except ExportDiverError as e:
            raise click.ClickException(str(e)) from e

    return wrapper


@click.group()
@click.version_option(version=__version__, prog_name="exportdiver")
@click.option("-v", "--verbose", is_flag=True, help="Log debug output to stderr")
def cli(verbose: bool):
    """exportdiver: browse and search your ChatGPT data exports.

    Import an export ZIP as a conversation-set, then list, read and search
    it here or through the MCP server.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )


@cli.command("import")
@click.argument("zip_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--name", "set_name", help="Conversation-set name (default: the ZIP's file name)")
@click.option("--overwrite", is_flag=True, help="Replace an existing set of the same name")
@_handle_errors
def import_cmd(zip_path: Path, set_name: str | None, overwrite: bool):
    """Import a ChatGPT data export ZIP file.

    Get your export from ChatGPT: Settings → Data Controls → Export Data.

    Example:
        exportdiver import ~/Downloads/chatgpt-2024-01-15.zip --name 2024-export
    """
    data = zip_path.read_bytes()
    name = set_name or zip_path.stem

    with click.progressbar(length=100, label="Importing", show_percent=True) as bar:
        done = 0

        def progress(event: ProgressEvent):
            nonlocal done
            if event.percentage > done:
                bar.update(event.percentage - done)
                done = event.percentage

        library = _library()
        try:
            set_id = library.ingest_archive(data, name, progress=progress, overwrite=overwrite)
            stats = library.set_stats(set_id)
        finally:
            library.close()

    click.echo()
    click.echo(click.style("Import complete!", fg="green", bold=True))
    click.echo(f"  Set:            {set_id}")
    click.echo(f"  Conversations:  {stats.conversation_count:,}")
    click.echo(f"  Media files:    {stats.media_count:,}")


@cli.command()
@_handle_errors
def sets():
    """List imported conversation-sets."""
    library = _library()
    try:
        entries = library.list_sets()
    finally:
        library.close()

    if not entries:
        click.echo("No conversation-sets found. Import your ChatGPT export first:")
        click.echo("  exportdiver import ~/Downloads/your-chatgpt-export.zip")
        return

    for s in entries:
        created = s.created_at.strftime("%Y-%m-%d %H:%M")
        click.echo(
            f"{s.name}  ({s.conversation_count:,} conversations, "
            f"{s.media_count:,} media, imported {created})"
        )
    click.echo(f"\nLocation: {DATA_DIR}")


@cli.command("list")
@click.argument("set_id")
@click.option("--limit", default=50, show_default=True, help="Maximum conversations to show")
@_handle_errors
def list_cmd(set_id: str, limit: int):
    """List conversations in a set, newest first."""
    library = _library()
    try:
        conversations = library.list_conversations(set_id)
    finally:
        library.close()

    for c in conversations[:limit]:
        click.echo(f"{c.date}  {c.title}")
        click.echo(click.style(f"    {c.id}", dim=True))
    if len(conversations) > limit:
        click.echo(f"\n... {len(conversations) - limit} more (use --limit)")


@cli.command()
@click.argument("set_id")
@click.argument("conversation_id")
@click.option("--html", "as_html", is_flag=True, help="Print the sanitized HTML of each part")
@_handle_errors
def show(set_id: str, conversation_id: str, as_html: bool):
    """Print a conversation transcript."""
    library = _library()
    try:
        transcript = library.get_conversation(set_id, conversation_id)
    finally:
        library.close()

    click.echo(click.style(transcript.title, bold=True))
    click.echo(f"Date: {format_timestamp(transcript.create_time)}")
    click.echo()

    for message in transcript.messages:
        click.echo(click.style(f"{message.author}:", bold=True))
        for part in message.parts:
            if part.kind == "html":
                click.echo(part.html if as_html else part.raw)
            elif part.kind == "transcript":
                click.echo(f"[transcript] {part.text}")
            elif part.kind == "missing":
                click.echo(f"[missing asset: {part.pointer}]")
            else:
                click.echo(f"[{part.kind}: {part.path}]")
        click.echo()


@cli.command()
@click.argument("set_id")
@click.argument("query")
@click.option(
    "--scope",
    type=click.Choice(["title", "content", "all"]),
    default="all",
    show_default=True,
)
@click.option("--case-sensitive", is_flag=True, help="Match case exactly")
@click.option("--limit", default=20, show_default=True, help="Maximum results to show")
@_handle_errors
def search(set_id: str, query: str, scope: str, case_sensitive: bool, limit: int):
    """Search a set's conversation titles and messages."""
    from .search import search_summary

    library = _library()
    try:
        total = len(library.list_conversations(set_id))
        results = library.search_conversations(set_id, query, scope, case_sensitive)
    finally:
        library.close()

    click.echo(search_summary(total, len(results), query, scope))
    click.echo()
    for i, r in enumerate(results[:limit], 1):
        click.echo(f"{i}. {click.style(r.conversation.title, bold=True)} (score {r.relevance_score})")
        click.echo(f"   ID: {r.conversation.id}")
        for m in r.matches[:3]:
            if m.type == "content":
                click.echo(f"   [{m.author}] {m.context.replace(chr(10), ' ')}")
        click.echo()


@cli.command("export")
@click.argument("set_id")
@click.argument("conversation_id")
@click.option(
    "--format",
    "fmt",
    type=click.Choice(["md", "txt", "html"]),
    default="md",
    show_default=True,
)
@click.option(
    "-o",
    "--output",
    type=click.Path(dir_okay=False, writable=True, path_type=Path),
    help="Write to this file instead of stdout",
)
@_handle_errors
def export_cmd(set_id: str, conversation_id: str, fmt: str, output: Path | None):
    """Export a conversation as Markdown, plain text or HTML.

    Asset links point into the set's media folder, relative to the set root.
    """
    library = _library()
    try:
        document = library.export_conversation(set_id, conversation_id, fmt)
    finally:
        library.close()

    if output is None:
        click.echo(document, nl=False)
        return
    output.write_text(document, encoding="utf-8")
    click.echo(f"Exported {conversation_id} to {output}")


@cli.command()
@click.argument("set_id")
@click.confirmation_option(prompt="This will delete the conversation-set and its files. Are you sure?")
@_handle_errors
def delete(set_id: str):
    """Delete a conversation-set."""
    library = _library()
    try:
        library.delete_set(set_id)
    finally:
        library.close()
    click.echo(f"Deleted {set_id}")


@cli.command()
def serve():
    """Start the MCP server (stdio transport)."""
    from .server import mcp

    mcp.run(transport="stdio")
