"""
Knowledge Indexer
=================

Loads medical reference documents into the local vector store.

The indexer:
1. Reads .md and .txt files from a directory (recursively)
2. Splits each file into overlapping chunks on paragraph boundaries
3. Embeds the chunks in batches
4. Stores them with "source" metadata for citation in the prompt

Chunk ids are "<relative path>#<n>", so re-indexing a file replaces its
chunks instead of duplicating them.

Run with:
    medcompanion-index path/to/knowledge [--rebuild]
"""

import argparse
import asyncio
from pathlib import Path

from medcompanion.rag.embeddings import EmbeddingError, EmbeddingGenerator
from medcompanion.rag.vectorstore import VectorDocument, VectorStore
from medcompanion.utils.logger import Logger

logger = Logger("Indexer")

INDEXABLE_SUFFIXES = (".md", ".txt")


def split_into_chunks(text: str, chunk_size: int = 1200, overlap: int = 200) -> list[str]:
    """
    Split text into chunks of at most `chunk_size` characters.

    Paragraphs are packed together while they fit. A paragraph longer than
    a chunk is cut into windows that overlap by `overlap` characters.
    """
    if overlap >= chunk_size:
        raise ValueError("overlap must be smaller than chunk_size")

    paragraphs = [p.strip() for p in text.split("\n\n") if p.strip()]
    chunks: list[str] = []
    current = ""

    for paragraph in paragraphs:
        if len(paragraph) > chunk_size:
            if current:
                chunks.append(current)
                current = ""
            step = chunk_size - overlap
            for start in range(0, len(paragraph), step):
                chunks.append(paragraph[start:start + chunk_size])
                if start + chunk_size >= len(paragraph):
                    break
            continue

        candidate = f"{current}\n\n{paragraph}" if current else paragraph
        if len(candidate) <= chunk_size:
            current = candidate
        else:
            chunks.append(current)
            current = paragraph

    if current:
        chunks.append(current)
    return chunks


class KnowledgeIndexer:
    """
    Indexes reference documents for knowledge retrieval.

    Example:
        indexer = KnowledgeIndexer(embeddings, VectorStore(Path("data/vectorstore")))
        counts = await indexer.index_directory(Path("knowledge"))
        print(f"Indexed {sum(counts.values())} chunks")
    """

    def __init__(
        self,
        embeddings: EmbeddingGenerator,
        vectorstore: VectorStore,
        chunk_size: int = 1200,
        overlap: int = 200,
        batch_size: int = 32
    ):
        self.embeddings = embeddings
        self.vectorstore = vectorstore
        self.chunk_size = chunk_size
        self.overlap = overlap
        self.batch_size = batch_size

    async def index_document(self, path: Path, root: Path | None = None) -> int:
        """
        Index one file.

        Returns:
            Number of chunks stored

        Raises:
            EmbeddingError: If the embedding service fails
        """
        text = path.read_text(encoding="utf-8", errors="replace")
        chunks = split_into_chunks(text, self.chunk_size, self.overlap)
        if not chunks:
            logger.debug(f"Nothing to index in {path.name}")
            return 0

        doc_key = path.relative_to(root).as_posix() if root else path.name
        source = path.stem.replace("_", " ").replace("-", " ").strip() or path.name

        documents = []
        for start in range(0, len(chunks), self.batch_size):
            batch = chunks[start:start + self.batch_size]
            vectors = await self.embeddings.generate_batch(batch)

            for offset, (chunk, vector) in enumerate(zip(batch, vectors)):
                documents.append(VectorDocument(
                    id=f"{doc_key}#{start + offset}",
                    content=chunk,
                    embedding=vector,
                    metadata={"source": source, "text": chunk, "path": doc_key},
                ))

        self.vectorstore.add_batch(documents)
        logger.info(f"Indexed {len(documents)} chunks from {doc_key}")
        return len(documents)

    async def index_directory(self, directory: Path) -> dict[str, int]:
        """
        Index every .md/.txt file under a directory.

        A failing file is logged and counted as 0; the rest continue.

        Returns:
            Dict mapping relative path to number of chunks indexed
        """
        results: dict[str, int] = {}
        files = sorted(
            p for p in directory.rglob("*")
            if p.is_file() and p.suffix.lower() in INDEXABLE_SUFFIXES
        )

        for path in files:
            key = path.relative_to(directory).as_posix()
            try:
                results[key] = await self.index_document(path, root=directory)
            except (EmbeddingError, OSError) as e:
                logger.error(f"Error indexing {key}", e)
                results[key] = 0

        total = sum(results.values())
        logger.info(f"Indexed {total} chunks across {len(files)} files")
        return results


def run() -> None:
    """Entry point for the medcompanion-index command."""
    from medcompanion.utils.config import load_indexing_config

    parser = argparse.ArgumentParser(description="Index medical reference documents")
    parser.add_argument("directory", type=Path, help="Directory of .md/.txt files")
    parser.add_argument("--rebuild", action="store_true", help="Clear the store first")
    args = parser.parse_args()

    embedding_config, knowledge_config = load_indexing_config()
    store = VectorStore(knowledge_config.store_directory)
    if args.rebuild:
        store.clear()

    embeddings = EmbeddingGenerator(
        api_key=embedding_config.api_key,
        url=embedding_config.url,
        dimension=embedding_config.dimension,
    )
    indexer = KnowledgeIndexer(embeddings, store)
    asyncio.run(indexer.index_directory(args.directory))


if __name__ == "__main__":
    run()
