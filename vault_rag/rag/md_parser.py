"""Markdown parsing for note text extraction.

Handles:
- YAML frontmatter detection
- Clean text extraction
"""
import re

import structlog
import yaml

logger = structlog.get_logger()


class MarkdownParser:
    """Parser for markdown documents with frontmatter support."""

    # Regex for YAML frontmatter (must be at start of file)
    FRONTMATTER_PATTERN = re.compile(r"^---\s*\n(.*?)\n---\s*\n", re.DOTALL)

    def strip_frontmatter(self, content: str) -> str:
        """Return the note text without its YAML frontmatter block.

        A leading block that is not valid YAML is ordinary text and is kept.
        """
        match = self.FRONTMATTER_PATTERN.match(content)

        if not match:
            return content

        yaml_content = match.group(1)
        try:
            yaml.safe_load(yaml_content)
        except yaml.YAMLError as e:
            logger.warning(
                "frontmatter_parse_error",
                error=str(e),
                yaml_preview=yaml_content[:100],
            )
            return content

        return content[match.end():]
