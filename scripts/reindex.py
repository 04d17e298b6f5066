#!/usr/bin/env python
"""Rebuild the embedding cache for the notes vault.

Usage:
    python scripts/reindex.py                      # Full rebuild
    python scripts/reindex.py --source a.md b.md   # Rebuild specific notes
    python scripts/reindex.py --verbose            # Show detailed progress
"""
import argparse
import asyncio
import sys
from datetime import datetime
from pathlib import Path

import structlog

from vault_rag import config
from vault_rag.errors import ConfigurationError
from vault_rag.llm_client import OllamaClient
from vault_rag.log import configure_logging
from vault_rag.rag.engine import RetrievalEngine
from vault_rag.rag.ingest import IngestionReport
from vault_rag.rag.types import SourceRef
from vault_rag.rag.vault import MarkdownVault
from vault_rag.settings import load_settings

logger = structlog.get_logger()


class ProgressReporter:
    """Simple progress reporter for CLI."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self.start_time = None

    def start(self, message: str):
        self.start_time = datetime.now()
        print(f"\n{'=' * 60}")
        print(f"  {message}")
        print(f"{'=' * 60}\n")

    def update(self, current: int, total: int, ref: SourceRef):
        percentage = (current / total) * 100 if total > 0 else 0
        bar_length = 40
        filled = int(bar_length * current / total) if total > 0 else 0
        bar = "█" * filled + "░" * (bar_length - filled)

        print(
            f"\r  [{bar}] {percentage:5.1f}% ({current}/{total}) {ref.label[:30]:<30}",
            end="",
            flush=True,
        )

        if self.verbose:
            print()

    def finish(self, report: IngestionReport, cache_path: Path):
        print("\n")
        elapsed_seconds = (datetime.now() - self.start_time).total_seconds()

        print(f"{'=' * 60}")
        print("  Indexing Complete!")
        print(f"{'=' * 60}\n")
        print(f"  Sources processed:   {report.sources_processed}")
        print(f"  Sources failed:      {report.sources_failed}")
        print(f"  Sources removed:     {report.sources_removed}")
        print(f"  Chunks embedded:     {report.chunks_created}")
        print(f"  Chunks too short:    {report.chunks_too_short}")
        print(f"  Embeddings failed:   {report.embeddings_failed}")
        print(f"  Time elapsed:        {elapsed_seconds:.1f}s")

        if report.chunks_created > 0 and elapsed_seconds > 0:
            rate = report.chunks_created / elapsed_seconds
            print(f"  Indexing rate:       {rate:.1f} chunks/sec")

        print(f"\n{'=' * 60}\n")

        failure = report.partial_failure
        if failure is not None:
            print(f"Warning: {failure.count} source(s) failed to index:")
            for source_id in failure.source_ids:
                print(f"   - {source_id}")
            print()

        print(f"Cache written to: {cache_path}\n")


async def main():
    """Main entry point for reindex script."""
    parser = argparse.ArgumentParser(
        description="Rebuild the embedding cache for the notes vault",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--source",
        nargs="+",
        default=None,
        help="Only rebuild these notes (paths relative to the notes directory)",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Show verbose progress output")
    parser.add_argument(
        "--notes-dir",
        type=Path,
        default=None,
        help=f"Notes directory (default: {config.NOTES_DIR})",
    )

    args = parser.parse_args()
    configure_logging("DEBUG" if args.verbose else "WARNING")

    progress = ProgressReporter(verbose=args.verbose)

    try:
        settings = load_settings()
        vault = MarkdownVault(notes_dir=args.notes_dir)
        client = OllamaClient()
        engine = RetrievalEngine(settings=settings, embedder=client, generator=client, source=vault)

        print("\nConfiguration:")
        print(f"   Notes directory:  {vault.notes_dir}")
        print(f"   Embedding model:  {settings.embedding_model}")
        print(f"   Chunk size:       {settings.chunk_size} chars")
        print(f"   Chunk overlap:    {settings.chunk_overlap} chars")

        await engine.load()

        if args.source:
            progress.start("Reindexing Notes")
            report = await engine.reindex(args.source)
        else:
            progress.start("Rebuilding Notes")
            report = await engine.rebuild(progress_callback=progress.update)

        progress.finish(report, engine.cache.path)

        if report.sources_failed > 0:
            sys.exit(1)

    except KeyboardInterrupt:
        print("\n\nIndexing cancelled by user.\n")
        sys.exit(1)

    except (ConfigurationError, FileNotFoundError) as e:
        print(f"\nError: {e}\n")
        sys.exit(1)

    except Exception as e:
        print(f"\nError: {e}\n")
        logger.error("reindex_script_failed", error=str(e), error_type=type(e).__name__)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
