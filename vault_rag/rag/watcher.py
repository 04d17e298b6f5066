"""File watcher for automatic note reindexing.

Monitors the notes directory and reindexes the markdown files that were
created, modified, moved or deleted. Deleted files drop out of the cache
when their source is rebuilt.
"""
import asyncio
from pathlib import Path
from typing import Optional, Set

import structlog
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from vault_rag.rag.engine import RetrievalEngine
from vault_rag.rag.vault import MarkdownVault

logger = structlog.get_logger()


class MarkdownFileHandler(FileSystemEventHandler):
    """Collects markdown changes and reindexes them after a quiet period."""

    def __init__(
        self,
        engine: RetrievalEngine,
        vault: MarkdownVault,
        loop: asyncio.AbstractEventLoop,
        debounce_seconds: float = 2.0,
    ):
        """Initialize the file handler.

        Args:
            engine: Engine whose cache is kept in sync
            vault: Vault the watched files belong to
            loop: Event loop the engine runs on
            debounce_seconds: Quiet time before pending changes are processed
        """
        super().__init__()
        self.engine = engine
        self.vault = vault
        self.loop = loop
        self.debounce_seconds = debounce_seconds

        self._pending: Set[str] = set()
        self._scheduled = False
        self._tasks: Set[asyncio.Task] = set()

    def _source_id(self, raw_path) -> Optional[str]:
        path = Path(raw_path if isinstance(raw_path, str) else raw_path.decode())
        if path.suffix != ".md":
            return None
        try:
            return self.vault.source_id_for(path)
        except ValueError:
            return None

    def on_any_event(self, event: FileSystemEvent):
        """Queue the affected markdown files for reindexing."""
        if event.is_directory or event.event_type not in ("created", "modified", "deleted", "moved"):
            return

        paths = [event.src_path]
        if event.event_type == "moved":
            paths.append(event.dest_path)

        source_ids = {sid for sid in map(self._source_id, paths) if sid}
        if not source_ids:
            return

        logger.info("notes_changed", event_type=event.event_type, source_ids=sorted(source_ids))
        # Runs on the watchdog thread; hand over to the engine's loop
        self.loop.call_soon_threadsafe(self._queue, source_ids)

    def _queue(self, source_ids: Set[str]) -> None:
        self._pending.update(source_ids)
        if not self._scheduled:
            self._scheduled = True
            self.loop.call_later(self.debounce_seconds, self._flush)

    def _flush(self) -> None:
        self._scheduled = False
        changes, self._pending = self._pending, set()
        if changes:
            task = self.loop.create_task(self._reindex(changes))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _reindex(self, source_ids: Set[str]) -> None:
        try:
            report = await self.engine.reindex(sorted(source_ids))
        except Exception as e:
            logger.error(
                "reindex_failed",
                source_ids=sorted(source_ids),
                error=str(e),
                error_type=type(e).__name__,
            )
            return

        logger.info("reindex_batch_completed", **report.as_dict())


class NotesWatcher:
    """Watcher for the notes directory."""

    def __init__(
        self,
        engine: RetrievalEngine,
        vault: MarkdownVault,
        debounce_seconds: float = 2.0,
    ):
        self.engine = engine
        self.vault = vault
        self.debounce_seconds = debounce_seconds

        self.event_handler: Optional[MarkdownFileHandler] = None
        self.observer: Optional[Observer] = None

    async def start(self) -> None:
        """Start watching for file changes."""
        if self.observer is not None:
            logger.warning("watcher_already_started")
            return

        self.event_handler = MarkdownFileHandler(
            engine=self.engine,
            vault=self.vault,
            loop=asyncio.get_running_loop(),
            debounce_seconds=self.debounce_seconds,
        )

        self.observer = Observer()
        self.observer.schedule(self.event_handler, str(self.vault.notes_dir), recursive=True)
        self.observer.start()

        logger.info("notes_watcher_started", notes_dir=str(self.vault.notes_dir))

    def stop(self) -> None:
        """Stop watching for file changes."""
        if self.observer is None:
            return

        self.observer.stop()
        self.observer.join(timeout=5.0)
        self.observer = None
        self.event_handler = None

        logger.info("notes_watcher_stopped")

    def is_alive(self) -> bool:
        return self.observer is not None and self.observer.is_alive()
