"""
Corpus scan: discover documents, read them and cut them into chunks.
"""

import asyncio
from pathlib import Path

from ..observability.logging import get_logger
from .chunking import Chunker
from .identity import Chunk, make_citation_id

logger = get_logger(__name__)

IGNORE_PARTS = {
    "__pycache__",
    "node_modules",
    ".git",
    ".vscode",
    ".idea",
    ".pytest_cache",
    ".mypy_cache",
}


def discover_files(directory: Path, extensions: list[str]) -> list[Path]:
    """Supported files under ``directory``, recursively, in sorted order."""
    if not directory.is_dir():
        logger.warning("Data directory does not exist", directory=str(directory))
        return []

    wanted = {ext.lower() for ext in extensions}
    files = []
    for file_path in directory.rglob("*"):
        if not file_path.is_file() or file_path.suffix.lower() not in wanted:
            continue
        relative = file_path.relative_to(directory)
        # Skip hidden files and common ignore patterns
        if any(part.startswith(".") or part in IGNORE_PARTS for part in relative.parts):
            continue
        files.append(file_path)

    files.sort(key=lambda p: p.relative_to(directory).as_posix())
    logger.info("Discovered files to index", directory=str(directory), files=len(files))
    return files


def read_text(file_path: Path) -> str:
    try:
        return file_path.read_text(encoding="utf-8")
    except UnicodeDecodeError:
        return file_path.read_text(encoding="latin-1")


async def load_and_chunk_documents(
    directory: Path, extensions: list[str], chunker: Chunker
) -> list[Chunk]:
    """Chunk every discovered document. Sources are POSIX paths relative to ``directory``."""
    chunks: list[Chunk] = []
    for file_path in discover_files(directory, extensions):
        text = await asyncio.to_thread(read_text, file_path)
        source = file_path.relative_to(directory).as_posix()
        parts = chunker.chunk(text)
        for idx, content in enumerate(parts):
            chunks.append(
                Chunk(
                    citation_id=make_citation_id(source, idx),
                    source=source,
                    chunk_index=idx,
                    content=content,
                )
            )
        logger.debug("Chunked document", source=source, chunks=len(parts))
    return chunks
