"""Markdown vault: a directory of notes exposed as a document source."""
import asyncio
from pathlib import Path
from typing import List, Optional

import structlog

from vault_rag import config
from vault_rag.errors import SourceReadError
from vault_rag.rag.md_parser import MarkdownParser
from vault_rag.rag.types import SourceRef

logger = structlog.get_logger()


class MarkdownVault:
    """Document source over ``*.md`` files under a directory.

    Source ids are POSIX paths relative to the vault root; labels are file
    names.
    """

    def __init__(self, notes_dir: Optional[Path] = None, strip_frontmatter: bool = True):
        """Initialize the vault.

        Args:
            notes_dir: Directory containing markdown notes (default from config)
            strip_frontmatter: Drop YAML frontmatter before the text is chunked
        """
        self.notes_dir = Path(notes_dir if notes_dir is not None else config.NOTES_DIR).resolve()
        self.strip_frontmatter = strip_frontmatter
        self.parser = MarkdownParser()

    def source_id_for(self, path: Path) -> str:
        """Source id for a path inside the vault.

        Relative paths are taken from the working directory, like the
        paths watchdog and rglob produce.

        Raises:
            ValueError: If the path is outside the vault
        """
        return Path(path).resolve().relative_to(self.notes_dir).as_posix()

    def _discover(self) -> List[SourceRef]:
        if not self.notes_dir.exists():
            raise FileNotFoundError(f"Notes directory not found: {self.notes_dir}")

        return [
            SourceRef(source_id=path.relative_to(self.notes_dir).as_posix(), label=path.name)
            for path in sorted(self.notes_dir.rglob("*.md"))
            if path.is_file()
        ]

    async def list_sources(self) -> List[SourceRef]:
        """List all markdown notes in the vault.

        Raises:
            FileNotFoundError: If the notes directory doesn't exist
        """
        sources = await asyncio.to_thread(self._discover)
        logger.info(
            "markdown_files_discovered",
            count=len(sources),
            notes_dir=str(self.notes_dir),
        )
        return sources

    def _read(self, source_id: str) -> str:
        path = self.notes_dir / source_id
        try:
            content = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise SourceReadError(source_id, f"Could not read {path}: {e}") from e

        if self.strip_frontmatter:
            return self.parser.strip_frontmatter(content)
        return content

    async def read_source(self, source_id: str) -> str:
        """Read a note's text.

        Raises:
            SourceReadError: If the file is missing or not valid UTF-8
        """
        return await asyncio.to_thread(self._read, source_id)
