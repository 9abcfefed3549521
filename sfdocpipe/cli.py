"""
Command-Line Interface for sfdocpipe.
"""

import typer
import logging
from pathlib import Path
import json
from typing import List, Optional
from typing_extensions import Annotated
import shutil

from .utils.config import load_config
from .utils.errors import ConfigError, PipelineError, RunAbortedError
from .utils.state_manager import JSONStateManager, StateManager
from .core.pipeline import run_pipeline, build_components
from .core.factory import (
    FETCHER_REGISTRY,
    CHUNKER_REGISTRY,
    EMBEDDER_REGISTRY,
    STORE_REGISTRY,
    NOTIFIER_REGISTRY,
    STATE_REGISTRY,
)
from .core.evaluation import Evaluator


logger = logging.getLogger(__name__)

app = typer.Typer(help="Scrape documentation pages into a vector store.")

DEFAULT_STATE_FILE = ".sfdocpipe_state.json"

DEFAULT_YAML_CONTENT = """# Default sfdocpipe Pipeline Configuration
urls:
  - https://developer.salesforce.com/docs/atlas.en-us.apexcode.meta/apexcode/apex_intro.htm
  - https://developer.salesforce.com/docs/platform/lwc/guide/get-started-introduction.html
  - https://developer.salesforce.com/docs/atlas.en-us.soql_sosl.meta/soql_sosl/sforce_api_calls_soql.htm
  - https://help.salesforce.com/s/articleView?id=sf.lightning_app_builder_overview.htm

settings:
  max_chunk_size: 1500
  chunk_overlap: 200
  embedding_batch_size: 50
  embedding_dimensions: 1536
  retry_attempts: 3
  parallelism: 4
  notify_on_failure: false

fetcher:
  type: web
  config:
    timeout: 10

embedder:
  type: openai
  config:
    model_name: text-embedding-3-small

store:
  type: pgvector
  config:
    table_name: documents

state:
  type: json
  config:
    path: .sfdocpipe_state.json
"""


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging.")
):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )


def _coerce(value: str):
    """Reads numeric filter values as numbers so they match numeric metadata."""
    for cast in (int, float):
        try:
            return cast(value)
        except ValueError:
            continue
    return value


def _parse_filters(filters: Optional[List[str]]) -> dict:
    metadata_filter = {}
    for item in filters or []:
        key, sep, value = item.partition("=")
        if not sep:
            raise typer.BadParameter(f"Filter '{item}' must look like key=value.")
        metadata_filter[key] = _coerce(value)
    return metadata_filter


@app.command()
def run(
    config_path: str = typer.Option(
        "pipeline.yaml",
        "-c",
        help="Path to the pipeline's YAML configuration file.",
    )
):
    """Runs the ingestion pipeline once."""
    try:
        summary = run_pipeline(config_path)
    except ConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        raise typer.Exit(code=1)
    except RunAbortedError as e:
        logger.error(f"Pipeline aborted: {e}")
        if e.summary is not None:
            print(json.dumps(e.summary.to_dict(), indent=2))
        raise typer.Exit(code=1)
    print(json.dumps(summary.to_dict(), indent=2))


@app.command()
def init():
    """Writes a default pipeline.yaml into the current directory."""
    logger.info("Initializing new sfdocpipe project...")
    config_file = Path("pipeline.yaml")
    if config_file.exists():
        logger.warning("'pipeline.yaml' already exists.")
    else:
        config_file.write_text(DEFAULT_YAML_CONTENT.strip() + "\n")
        logger.info("Created default 'pipeline.yaml'.")

    logger.info("Project initialized.")


@app.command()
def status(
    state_file: str = typer.Option(
        DEFAULT_STATE_FILE, "--state-file", "-s", help="Path to the JSON state file."
    )
):
    """Shows the last run summary and the tracked URLs."""
    if not Path(state_file).exists():
        logger.warning("No state file found. Run a pipeline first.")
        return

    state_manager = StateManager(backend=JSONStateManager(state_file))
    last_run = state_manager.get_last_run()
    if last_run:
        print("\n--- Last Run ---")
        for key in (
            "status",
            "started_at",
            "finished_at",
            "urls_attempted",
            "urls_succeeded",
            "urls_failed",
            "documents_stored",
        ):
            print(f"  {key}: {last_run.get(key)}")

    processed_items = state_manager.state.get("processed_items", {})
    if not processed_items:
        logger.info("No URLs have been ingested yet.")
    else:
        print("\n--- Tracked URLs ---")
        for item_id in sorted(processed_items.keys()):
            print(f"  - {item_id}")
        print("--------------------")


@app.command(name="list-components")
def list_components():
    """Lists all available components."""
    logger.info("Listing available components...")

    def print_registry(title, registry):
        print(f"\n--- {title} ---")
        for name in sorted(registry.keys()):
            print(f"  - {name}")

    print_registry("Fetchers", FETCHER_REGISTRY)
    print_registry("Chunkers", CHUNKER_REGISTRY)
    print_registry("Embedders", EMBEDDER_REGISTRY)
    print_registry("Stores", STORE_REGISTRY)
    print_registry("Notifiers", NOTIFIER_REGISTRY)
    print_registry("State backends", STATE_REGISTRY)


@app.command(name="test-connection")
def test_connection(
    component: Annotated[
        str, typer.Argument(help="Component to test (fetcher or store)")
    ],
    config_path: str = typer.Option("pipeline.yaml", "-c", help="Config path."),
):
    """Tests the connection for a specified component."""
    logger.info(f"Testing connection for '{component}'...")
    try:
        config = load_config(config_path)
        components = build_components(config)
        if component == "fetcher":
            for url in config.urls:
                components.fetcher.test_connection(url)
        elif component == "store":
            components.store.test_connection()
        else:
            logger.error(f"Unknown component: '{component}'")
            raise typer.Exit(code=1)
    except (PipelineError, ConnectionError) as e:
        logger.error(f"Connection test failed: {e}", exc_info=True)
        raise typer.Exit(code=1)


@app.command()
def search(
    query: Annotated[str, typer.Argument(help="Text to search for.")],
    config_path: str = typer.Option("pipeline.yaml", "-c", help="Config path."),
    k: int = typer.Option(5, "--top-k", "-k", help="Number of results."),
    filters: Optional[List[str]] = typer.Option(
        None, "--filter", "-f", help="Metadata equality filter, e.g. doc_type=apex."
    ),
):
    """Runs a similarity search against the vector store."""
    try:
        config = load_config(config_path)
        components = build_components(config)
        evaluator = Evaluator(embedder=components.embedder, store=components.store)
        results = evaluator.search(query, k, _parse_filters(filters) or None)
    except PipelineError as e:
        logger.error(f"Search failed: {e}", exc_info=True)
        raise typer.Exit(code=1)

    print(f"\n--- Top {len(results)} results ---")
    for i, result in enumerate(results, 1):
        metadata = result.document.metadata
        print(
            f"{i}. [{result.score:.4f}] {metadata.get('source_url', 'N/A')} "
            f"(doc_type={metadata.get('doc_type')}, chunk={metadata.get('sequence_index')})"
        )
        print(f"   {result.document.content[:200]!r}")


@app.command()
def clean(
    state_file: str = typer.Option(
        DEFAULT_STATE_FILE, "--state-file", "-s", help="Path to the JSON state file."
    ),
    config_path: str = typer.Option("pipeline.yaml", "-c", help="Config file."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation."),
):
    """Removes the state file and any local ChromaDB directory."""
    logger.info("Starting cleanup...")
    if not yes and not typer.confirm("Are you sure?"):
        logger.info("Aborting cleanup.")
        return

    state_path = Path(state_file)
    if state_path.exists():
        state_path.unlink()
        logger.info(f"Deleted state file: {state_path}")

    try:
        config = load_config(config_path)
        store_path = config.store.config.get("path")
        if config.store.type == "chromadb" and store_path:
            store_dir = Path(store_path)
            if store_dir.exists() and store_dir.is_dir():
                shutil.rmtree(store_dir)
                logger.info(f"Deleted store directory: {store_dir}")
    except ConfigError as e:
        logger.warning(f"Could not clean store: {e}")

    logger.info("Cleanup complete.")


@app.command()
def eval(
    dataset_path: Annotated[
        str, typer.Argument(help="Path to evaluation dataset.")
    ],
    config_path: str = typer.Option("pipeline.yaml", "-c", help="Config path."),
    k: int = typer.Option(5, "--top-k", "-k", help="Top k results to check."),
):
    """Evaluates retrieval hit rate against a JSONL dataset."""
    logger.info(f"Starting evaluation with config: '{config_path}'")
    try:
        config = load_config(config_path)
        components = build_components(config)
        evaluator = Evaluator(embedder=components.embedder, store=components.store)
        results = evaluator.evaluate(dataset_path=dataset_path, k=k)
    except (PipelineError, OSError) as e:
        logger.error(f"Evaluation failed: {e}", exc_info=True)
        raise typer.Exit(code=1)
    print(json.dumps(results, indent=2))


if __name__ == "__main__":
    app()
