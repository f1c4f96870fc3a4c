"""
Knowledge Retrieval (RAG)
=========================

Before each answer the companion looks up the user's message in a medical
knowledge base and puts the best passages into the system prompt.

Components:
- embeddings.py: embed text with the same model used for indexing
- vectorstore.py: local file-backed store, or a hosted Pinecone index
- indexer.py: load reference documents into the local store

Retrieval rules:
1. Embed the query (a failing embedding service yields a zero vector)
2. Ask the store for the top-K nearest chunks
3. Drop chunks below the relevance floor (0.7)
4. Concatenate "[Source: ...]" blocks in store order until the token cap

Retrieval is best-effort: any failure means "no relevant knowledge" (an
empty string), never an aborted turn.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from medcompanion.agent.budget import estimate_tokens
from medcompanion.rag.embeddings import EmbeddingGenerator, EmbeddingError
from medcompanion.rag.vectorstore import PineconeIndex, VectorDocument, VectorStore
from medcompanion.rag.indexer import KnowledgeIndexer
from medcompanion.utils.logger import Logger

if TYPE_CHECKING:
    from medcompanion.utils.config import Config

logger = Logger("RAG")

DEFAULT_SOURCE = "Medical Database"


class VectorBackend(Protocol):
    async def query(self, vector: list[float], top_k: int = 5) -> list[VectorDocument]:
        ...


@dataclass(frozen=True)
class RetrievedChunk:
    """
    A knowledge passage that passed the relevance floor.

    Attributes:
        text: The passage
        source: Where it came from (shown to the model)
        relevance: Similarity score
    """
    text: str
    source: str
    relevance: float

    def to_block(self) -> str:
        return f"[Source: {self.source}]\n{self.text}\n"


class KnowledgeRetriever:
    """
    Turns a user message into prompt-ready knowledge.

    Example:
        retriever = KnowledgeRetriever(embeddings, store, top_k=5,
                                       relevance_floor=0.7, token_cap=3000)
        knowledge = await retriever.retrieve("What helps a mild headache?")
        if knowledge:
            ...  # add to the system prompt
    """

    def __init__(
        self,
        embeddings: EmbeddingGenerator,
        store: VectorBackend,
        top_k: int = 5,
        relevance_floor: float = 0.7,
        token_cap: int = 3000
    ):
        self.embeddings = embeddings
        self.store = store
        self.top_k = top_k
        self.relevance_floor = relevance_floor
        self.token_cap = token_cap

    async def retrieve_chunks(self, query: str) -> list[RetrievedChunk]:
        """
        Retrieve the chunks that fit under the floor and the token cap.

        Returns:
            Accepted chunks in store order (best first); empty on any failure
        """
        if not query.strip():
            return []

        try:
            vector = await self.embeddings.generate(query)
            matches = await self.store.query(vector, top_k=self.top_k)
        except Exception as e:
            logger.error("Knowledge retrieval error", e)
            return []

        accepted: list[RetrievedChunk] = []
        blocks: list[str] = []

        for match in matches:
            score = match.score if match.score is not None else 0.0
            if score < self.relevance_floor:
                continue

            content = match.content or match.metadata.get("text") or match.metadata.get("content") or ""
            if not content.strip():
                continue

            chunk = RetrievedChunk(
                text=content,
                source=match.metadata.get("source") or DEFAULT_SOURCE,
                relevance=score,
            )
            candidate = "\n".join(blocks + [chunk.to_block()])
            if estimate_tokens(candidate) > self.token_cap:
                break

            accepted.append(chunk)
            blocks.append(chunk.to_block())

        logger.debug(
            f"Retrieved {len(matches)} matches, kept {len(accepted)}",
            {"tokens": estimate_tokens("\n".join(blocks))}
        )
        return accepted

    async def retrieve(self, query: str) -> str:
        """
        Retrieve knowledge for the system prompt.

        Returns:
            Concatenated source blocks, or "" when nothing relevant was found
        """
        chunks = await self.retrieve_chunks(query)
        return "\n".join(chunk.to_block() for chunk in chunks).strip()


def create_vector_backend(config: "Config") -> VectorBackend:
    """Pick the configured vector backend."""
    knowledge = config.knowledge
    if knowledge.backend == "pinecone":
        if knowledge.pinecone_api_key and knowledge.pinecone_index_host:
            return PineconeIndex(knowledge.pinecone_api_key, knowledge.pinecone_index_host)
        logger.warning("VECTOR_BACKEND=pinecone but Pinecone is not configured; using local store")
    return VectorStore(knowledge.store_directory)


def create_retriever(config: "Config") -> KnowledgeRetriever:
    """Build a retriever from configuration."""
    embeddings = EmbeddingGenerator(
        api_key=config.embedding.api_key,
        url=config.embedding.url,
        dimension=config.embedding.dimension,
    )
    return KnowledgeRetriever(
        embeddings=embeddings,
        store=create_vector_backend(config),
        top_k=config.knowledge.top_k,
        relevance_floor=config.knowledge.relevance_floor,
        token_cap=config.knowledge.token_cap,
    )


__all__ = [
    "KnowledgeRetriever",
    "RetrievedChunk",
    "EmbeddingGenerator",
    "EmbeddingError",
    "VectorStore",
    "VectorDocument",
    "PineconeIndex",
    "KnowledgeIndexer",
    "create_retriever",
    "create_vector_backend",
]
