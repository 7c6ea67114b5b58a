"""Command-line interface for the knowledge engine.

Commands:
- ingest: Chunk, embed and index a text file
- add-qa / add-synonym / add-doc / add-schema: Add curated knowledge
- search: Retrieve and rerank knowledge (optionally fused with files)
- list: List knowledge entries
- delete-entry / delete-source: Remove knowledge or an indexed file
- embed-pending: Retry embedding for entries stored without one
- info: Show configuration
"""

import asyncio
import json
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, List, Optional
from uuid import UUID

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from knowledge.config.loader import get_default_config_path, load_config
from knowledge.config.schema import AppConfig
from knowledge.entities import KnowledgeType
from knowledge.observability.logging import configure_from_config, get_logger
from knowledge.pipelines.ingestion import IngestionError
from knowledge.service import KnowledgeBase, KnowledgeBaseError, StoreRegistry

app = typer.Typer(
    name="knowledge",
    help="Knowledge indexing and retrieval engine",
    add_completion=False,
)

console = Console()
logger = get_logger(__name__)

ConfigOption = typer.Option(None, "--config", "-c", help="Config file path")
ProfileOption = typer.Option(None, "--profile", "-p", help="Config profile")
OwnerOption = typer.Option(None, "--owner", "-o", help="Owner id (defaults to config default_owner)")
ScopeOption = typer.Option(None, "--scope", "-s", help="Scope (entity) id")


def _load_config(config_file: Optional[Path], profile: Optional[str]) -> AppConfig:
    """Load configuration and setup logging."""
    if config_file is None:
        config_file = get_default_config_path()

    config = load_config(config_file, profile=profile)
    configure_from_config(config.logging)
    return config


@asynccontextmanager
async def _open_knowledge_base(config: AppConfig) -> AsyncIterator[KnowledgeBase]:
    registry = StoreRegistry(config)
    kb = None
    try:
        try:
            kb = await KnowledgeBase.from_config(config, registry)
        except Exception as e:
            console.print(f"[red]Error initializing knowledge base: {e}[/red]")
            raise typer.Exit(1)
        yield kb
    finally:
        if kb is not None:
            await kb.close()
        await registry.close()


def _parse_types(values: Optional[List[str]]) -> Optional[list[KnowledgeType]]:
    if not values:
        return None
    try:
        return [KnowledgeType(v) for v in values]
    except ValueError:
        valid = ", ".join(t.value for t in KnowledgeType)
        console.print(f"[red]Unknown type in {values}; valid types: {valid}[/red]")
        raise typer.Exit(1)


@app.command()
def ingest(
    path: Path = typer.Argument(..., help="Text file to ingest"),
    source_id: Optional[str] = typer.Option(None, "--source-id", help="Source id (defaults to the file name)"),
    config_file: Optional[Path] = ConfigOption,
    profile: Optional[str] = ProfileOption,
    owner: Optional[str] = OwnerOption,
    scope: Optional[str] = ScopeOption,
):
    """Chunk, embed and index a file. Re-ingesting a source replaces it."""
    asyncio.run(_ingest_async(path, source_id, config_file, profile, owner, scope))


async def _ingest_async(
    path: Path,
    source_id: Optional[str],
    config_file: Optional[Path],
    profile: Optional[str],
    owner: Optional[str],
    scope: Optional[str],
):
    config = _load_config(config_file, profile)
    if not path.is_file():
        console.print(f"[red]File not found: {path}[/red]")
        raise typer.Exit(1)

    text = path.read_text(encoding="utf-8", errors="replace")
    scope_metadata = {"entity_id": scope} if scope else {}
    async with _open_knowledge_base(config) as kb:
        try:
            count = await kb.ingest_file(
                source_id or path.name,
                text,
                owner_id=owner or config.default_owner,
                scope_metadata=scope_metadata,
                filename=path.name,
            )
        except IngestionError as e:
            console.print(f"[red]Ingestion failed: {e}[/red]")
            raise typer.Exit(1)

    console.print(f"[green]✓ Indexed {count} chunk(s) from {path.name}[/green]")


async def _add_async(
    config_file: Optional[Path],
    profile: Optional[str],
    entry_type: KnowledgeType,
    payload: dict,
    owner: Optional[str],
    scope: Optional[str],
):
    config = _load_config(config_file, profile)
    async with _open_knowledge_base(config) as kb:
        try:
            entry_id = await kb.add_entry(
                entry_type, payload, owner_id=owner or config.default_owner, scope_id=scope
            )
        except KnowledgeBaseError as e:
            console.print(f"[red]{e}[/red]")
            raise typer.Exit(1)
    console.print(f"[green]✓ Added {entry_type.value} entry {entry_id}[/green]")


@app.command("add-qa")
def add_qa(
    question: str = typer.Argument(..., help="Question"),
    answer: str = typer.Argument(..., help="Answer"),
    config_file: Optional[Path] = ConfigOption,
    profile: Optional[str] = ProfileOption,
    owner: Optional[str] = OwnerOption,
    scope: Optional[str] = ScopeOption,
):
    """Add a question/answer pair (near-duplicate questions are skipped)."""
    payload = {"question": question, "answer": answer}
    asyncio.run(_add_async(config_file, profile, KnowledgeType.QA_PAIR, payload, owner, scope))


@app.command("add-synonym")
def add_synonym(
    noun: str = typer.Argument(..., help="Canonical term"),
    synonyms: List[str] = typer.Argument(..., help="Synonyms of the term"),
    config_file: Optional[Path] = ConfigOption,
    profile: Optional[str] = ProfileOption,
    owner: Optional[str] = OwnerOption,
    scope: Optional[str] = ScopeOption,
):
    """Add a term and its synonyms."""
    payload = {"noun": noun, "synonyms": synonyms}
    asyncio.run(_add_async(config_file, profile, KnowledgeType.SYNONYM, payload, owner, scope))


@app.command("add-doc")
def add_doc(
    title: str = typer.Argument(..., help="Title"),
    content: str = typer.Argument(..., help="Business knowledge text"),
    category: Optional[str] = typer.Option(None, "--category", help="Category"),
    tags: Optional[List[str]] = typer.Option(None, "--tag", help="Tag (repeatable)"),
    config_file: Optional[Path] = ConfigOption,
    profile: Optional[str] = ProfileOption,
    owner: Optional[str] = OwnerOption,
    scope: Optional[str] = ScopeOption,
):
    """Add a piece of business knowledge."""
    payload = {"title": title, "content": content, "category": category, "tags": tags or []}
    asyncio.run(
        _add_async(config_file, profile, KnowledgeType.BUSINESS_KNOWLEDGE, payload, owner, scope)
    )


@app.command("add-schema")
def add_schema(
    path: Path = typer.Argument(..., help='JSON file: {"database": ..., "content": ..., "tables": [...]}'),
    config_file: Optional[Path] = ConfigOption,
    profile: Optional[str] = ProfileOption,
    owner: Optional[str] = OwnerOption,
    scope: Optional[str] = ScopeOption,
):
    """Add a database schema and one child entry per table."""
    asyncio.run(_add_schema_async(path, config_file, profile, owner, scope))


async def _add_schema_async(
    path: Path,
    config_file: Optional[Path],
    profile: Optional[str],
    owner: Optional[str],
    scope: Optional[str],
):
    config = _load_config(config_file, profile)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        database = data["database"]
    except (OSError, ValueError, KeyError) as e:
        console.print(f"[red]Invalid schema file {path}: {e}[/red]")
        raise typer.Exit(1)

    tables = data.get("tables", [])
    async with _open_knowledge_base(config) as kb:
        try:
            parent_id, child_ids = await kb.add_schema(
                database,
                tables,
                data.get("content") or json.dumps({"database": database}, ensure_ascii=False),
                owner_id=owner or config.default_owner,
                scope_id=scope,
                description=data.get("description"),
            )
        except KnowledgeBaseError as e:
            console.print(f"[red]{e}[/red]")
            raise typer.Exit(1)

    console.print(f"[green]✓ Added schema {parent_id} with {len(child_ids)} table(s)[/green]")


@app.command()
def search(
    query: str = typer.Argument(..., help="Search query"),
    top_k: Optional[int] = typer.Option(None, "--top-k", "-k", help="Number of results"),
    types: Optional[List[str]] = typer.Option(None, "--type", "-t", help="Knowledge type (repeatable)"),
    file_ids: Optional[List[str]] = typer.Option(None, "--file", "-f", help="Also search this file (repeatable)"),
    min_score: Optional[float] = typer.Option(None, "--min-score", help="Similarity floor"),
    no_rerank: bool = typer.Option(False, "--no-rerank", help="Skip reranking"),
    enhanced: Optional[bool] = typer.Option(None, "--enhanced/--basic", help="Blend type and recency into scores"),
    config_file: Optional[Path] = ConfigOption,
    profile: Optional[str] = ProfileOption,
    owner: Optional[str] = OwnerOption,
    scope: Optional[str] = ScopeOption,
):
    """Search the knowledge base."""
    asyncio.run(
        _search_async(
            query, top_k, _parse_types(types), file_ids, min_score,
            not no_rerank, enhanced, config_file, profile, owner, scope,
        )
    )


async def _search_async(
    query: str,
    top_k: Optional[int],
    types: Optional[list[KnowledgeType]],
    file_ids: Optional[List[str]],
    min_score: Optional[float],
    use_reranking: bool,
    enhanced: Optional[bool],
    config_file: Optional[Path],
    profile: Optional[str],
    owner: Optional[str],
    scope: Optional[str],
):
    config = _load_config(config_file, profile)
    async with _open_knowledge_base(config) as kb:
        response = await kb.query(
            query,
            owner_id=owner or config.default_owner,
            types=types,
            scope_id=scope,
            file_ids=file_ids,
            top_k=top_k,
            min_score=min_score,
            use_reranking=use_reranking,
            enhanced=enhanced,
        )

    if "error" in response.metadata:
        console.print(f"[yellow]Search degraded: {response.metadata['error']}[/yellow]")
    if not response.results:
        console.print("[yellow]No results found[/yellow]")
        return

    console.print(f"\n[green]Found {response.total} result(s):[/green]\n")
    for index, result in enumerate(response.results, 1):
        console.print(
            f"[bold cyan]{index}. {escape(f'[{result.type.value}]')} {escape(result.title)}[/bold cyan] "
            f"(score: {result.score:.4f}, similarity: {result.similarity:.4f})"
        )
        preview = result.content if len(result.content) <= 200 else result.content[:200] + "..."
        console.print(f"   {escape(preview)}")
        console.print()


@app.command("list")
def list_entries(
    entry_type: Optional[str] = typer.Option(None, "--type", "-t", help="Knowledge type"),
    children: bool = typer.Option(False, "--children", help="Show child entries"),
    limit: int = typer.Option(50, "--limit", "-n", help="Maximum entries"),
    config_file: Optional[Path] = ConfigOption,
    profile: Optional[str] = ProfileOption,
    owner: Optional[str] = OwnerOption,
    scope: Optional[str] = ScopeOption,
):
    """List knowledge entries, newest first."""
    types = _parse_types([entry_type] if entry_type else None)
    asyncio.run(
        _list_async(types[0] if types else None, children, limit, config_file, profile, owner, scope)
    )


async def _list_async(
    entry_type: Optional[KnowledgeType],
    children: bool,
    limit: int,
    config_file: Optional[Path],
    profile: Optional[str],
    owner: Optional[str],
    scope: Optional[str],
):
    config = _load_config(config_file, profile)
    async with _open_knowledge_base(config) as kb:
        trees = await kb.list_entries(
            owner_id=owner or config.default_owner,
            entry_type=entry_type,
            scope_id=scope,
            include_children=children,
            limit=limit,
        )

    if not trees:
        console.print("[yellow]No entries found[/yellow]")
        return

    table = Table(title="Knowledge Entries")
    table.add_column("ID", style="cyan")
    table.add_column("Type", style="magenta")
    table.add_column("Title", style="green")
    table.add_column("Owner")
    table.add_column("Created")
    for tree in trees:
        entry = tree.entry
        table.add_row(
            str(entry.id), entry.type.value, escape(entry.title), entry.owner_id or "-",
            entry.created_at.strftime("%Y-%m-%d %H:%M"),
        )
        for child in tree.children:
            table.add_row(
                f"  └ {child.id}", child.type.value, escape(child.title), child.owner_id or "-",
                child.created_at.strftime("%Y-%m-%d %H:%M"),
            )
    console.print(table)


@app.command("delete-entry")
def delete_entry(
    entry_id: str = typer.Argument(..., help="Entry id"),
    config_file: Optional[Path] = ConfigOption,
    profile: Optional[str] = ProfileOption,
    owner: Optional[str] = OwnerOption,
):
    """Delete an entry and its children."""
    try:
        parsed = UUID(entry_id)
    except ValueError:
        console.print(f"[red]Invalid entry id: {entry_id}[/red]")
        raise typer.Exit(1)
    asyncio.run(_delete_entry_async(parsed, config_file, profile, owner))


async def _delete_entry_async(
    entry_id: UUID,
    config_file: Optional[Path],
    profile: Optional[str],
    owner: Optional[str],
):
    config = _load_config(config_file, profile)
    async with _open_knowledge_base(config) as kb:
        deleted = await kb.delete_entry(entry_id, owner_id=owner or config.default_owner)

    if not deleted:
        console.print(f"[yellow]Entry {entry_id} not found[/yellow]")
        raise typer.Exit(1)
    console.print(f"[green]✓ Deleted entry {entry_id}[/green]")


@app.command("delete-source")
def delete_source(
    source_id: str = typer.Argument(..., help="Source (file) id"),
    config_file: Optional[Path] = ConfigOption,
    profile: Optional[str] = ProfileOption,
):
    """Delete an indexed file and knowledge linked to it."""
    asyncio.run(_delete_source_async(source_id, config_file, profile))


async def _delete_source_async(source_id: str, config_file: Optional[Path], profile: Optional[str]):
    config = _load_config(config_file, profile)
    async with _open_knowledge_base(config) as kb:
        records, entries = await kb.delete_source_counts(source_id)

    console.print(f"[green]✓ Deleted source {source_id}[/green] ({records} record(s), {entries} linked entry(ies))")


@app.command("embed-pending")
def embed_pending(
    config_file: Optional[Path] = ConfigOption,
    profile: Optional[str] = ProfileOption,
    owner: Optional[str] = OwnerOption,
):
    """Retry embedding for entries stored without one."""
    asyncio.run(_embed_pending_async(config_file, profile, owner))


async def _embed_pending_async(config_file: Optional[Path], profile: Optional[str], owner: Optional[str]):
    config = _load_config(config_file, profile)
    async with _open_knowledge_base(config) as kb:
        fixed = await kb.embed_pending(owner_id=owner or config.default_owner)
    console.print(f"[green]✓ Embedded {fixed} pending entr{'y' if fixed == 1 else 'ies'}[/green]")


@app.command()
def info(
    config_file: Optional[Path] = ConfigOption,
    profile: Optional[str] = ProfileOption,
):
    """Show system information and configuration."""
    config = _load_config(config_file, profile)

    table = Table(title="Knowledge Engine Information")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Data Directory", str(config.data_dir))
    table.add_row("Default Owner", config.default_owner or "-")
    table.add_row("Log Level", config.logging.level.value)
    table.add_row("Embedding Provider", config.embedding.provider.value)
    table.add_row("Embedding Model", config.embedding.model_name)
    table.add_row("Rerank Provider", config.rerank.provider.value)
    table.add_row("Vector Store", config.vector_store.store_type.value)
    table.add_row("Record Store", config.record_store.store_type.value)
    table.add_row("File Retrieval", config.file_retrieval.provider.value)
    table.add_row("Chunk Size / Overlap", f"{config.chunking.chunk_size} / {config.chunking.chunk_overlap}")

    console.print(table)


if __name__ == "__main__":
    app()
