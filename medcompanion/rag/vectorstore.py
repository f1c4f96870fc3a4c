"""
Vector Stores
=============

Two interchangeable backends for the medical knowledge base. Both answer

    query(vector, top_k) -> list[VectorDocument]   (best match first, .score set)

1. VectorStore: a local file-backed store. Documents live in
   documents.json and their embeddings in embeddings.npy; search is an
   exact cosine similarity scan with numpy. Fine for a few thousand chunks
   and easy to inspect.

2. PineconeIndex: a hosted Pinecone index queried over its REST API. The
   chunk text is expected in the match metadata ("text" or "content"),
   with an optional "source".

Cosine Similarity:
    cos(A, B) = (A · B) / (||A|| * ||B||)
    1 means same direction, 0 unrelated. A zero query vector (the embedding
    fallback) matches nothing.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx
import numpy as np

from medcompanion.utils.logger import Logger

logger = Logger("VectorStore")


@dataclass
class VectorDocument:
    """
    A knowledge chunk with its embedding.

    Attributes:
        id: Unique identifier (e.g. "guides/headache.md#3")
        content: The chunk text
        embedding: The vector embedding (empty for remote matches)
        metadata: Additional data ("source", "text")
        score: Similarity score (set by query)
    """
    id: str
    content: str
    embedding: list[float]
    metadata: dict[str, Any] = field(default_factory=dict)
    score: float | None = None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "content": self.content,
            "embedding": self.embedding,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "VectorDocument":
        return cls(
            id=data["id"],
            content=data["content"],
            embedding=data["embedding"],
            metadata=data.get("metadata", {}),
        )


class VectorStore:
    """
    File-based vector store with cosine similarity search.

    Example:
        store = VectorStore(Path("data/vectorstore"))
        store.add_batch([VectorDocument(id="a#0", content="...", embedding=[...],
                                        metadata={"source": "WHO"})])
        matches = await store.query(query_vector, top_k=5)
    """

    def __init__(self, storage_path: Path):
        self.storage_path = storage_path
        self.documents_file = storage_path / "documents.json"
        self.embeddings_file = storage_path / "embeddings.npy"

        self._documents: dict[str, VectorDocument] = {}
        self._embeddings: np.ndarray | None = None
        self._id_to_index: dict[str, int] = {}

        storage_path.mkdir(parents=True, exist_ok=True)
        self._load()

        logger.info(f"Vector store initialized with {len(self._documents)} documents")

    def _load(self) -> None:
        """Load existing data from disk."""
        if not self.documents_file.exists():
            return

        try:
            with open(self.documents_file) as f:
                docs_data = json.load(f)

            for doc_data in docs_data:
                doc = VectorDocument.from_dict(doc_data)
                self._documents[doc.id] = doc

            # The JSON copy of each embedding is authoritative; the .npy file
            # is only a faster cache of the same matrix
            if self.embeddings_file.exists():
                embeddings = np.load(self.embeddings_file)
                if len(embeddings) == len(self._documents):
                    self._embeddings = embeddings
                    self._id_to_index = {doc_id: i for i, doc_id in enumerate(self._documents)}
                    return

            self._rebuild_embeddings()
            logger.debug(f"Loaded {len(self._documents)} documents from disk")

        except Exception as e:
            logger.error("Error loading vector store", e)

    def _save(self) -> None:
        """Save data to disk."""
        try:
            docs_list = [doc.to_dict() for doc in self._documents.values()]
            with open(self.documents_file, "w") as f:
                json.dump(docs_list, f)

            if self._embeddings is not None:
                np.save(self.embeddings_file, self._embeddings)
            elif self.embeddings_file.exists():
                self.embeddings_file.unlink()

            logger.debug(f"Saved {len(self._documents)} documents to disk")

        except Exception as e:
            logger.error("Error saving vector store", e)

    def add(self, document: VectorDocument) -> None:
        """Add a document, replacing any document with the same id."""
        is_update = document.id in self._documents
        self._documents[document.id] = document

        embedding = np.array(document.embedding, dtype=float)

        if self._embeddings is None:
            self._embeddings = embedding.reshape(1, -1)
            self._id_to_index[document.id] = 0
        elif is_update:
            self._embeddings[self._id_to_index[document.id]] = embedding
        else:
            self._embeddings = np.vstack([self._embeddings, embedding])
            self._id_to_index[document.id] = len(self._embeddings) - 1

    def add_batch(self, documents: list[VectorDocument]) -> None:
        """Add several documents and persist once."""
        for doc in documents:
            self.add(doc)

        self._save()
        logger.debug(f"Added batch of {len(documents)} documents")

    async def query(self, vector: list[float], top_k: int = 5) -> list[VectorDocument]:
        """
        Return the top_k most similar documents, best first.

        Async to share the Pinecone signature; the scan itself is in-process.
        Equal scores keep insertion order.
        """
        if self._embeddings is None or not self._documents:
            return []

        query = np.array(vector, dtype=float)
        query_norm = np.linalg.norm(query)
        if query_norm == 0 or query.shape[0] != self._embeddings.shape[1]:
            return []

        doc_norms = np.linalg.norm(self._embeddings, axis=1)
        doc_norms = np.where(doc_norms == 0, 1, doc_norms)

        similarities = np.dot(self._embeddings, query) / (doc_norms * query_norm)

        id_list = list(self._id_to_index.keys())
        results = [(id_list[i], float(similarities[i])) for i in range(len(similarities))]
        results.sort(key=lambda x: x[1], reverse=True)

        output = []
        for doc_id, score in results[:top_k]:
            doc = self._documents[doc_id]
            output.append(VectorDocument(
                id=doc.id,
                content=doc.content,
                embedding=doc.embedding,
                metadata=doc.metadata,
                score=score
            ))
        return output

    def _rebuild_embeddings(self) -> None:
        """Rebuild the embeddings matrix from the documents."""
        if not self._documents:
            self._embeddings = None
            self._id_to_index = {}
            return

        self._id_to_index = {doc_id: i for i, doc_id in enumerate(self._documents)}
        self._embeddings = np.array([doc.embedding for doc in self._documents.values()], dtype=float)

    def get(self, doc_id: str) -> VectorDocument | None:
        return self._documents.get(doc_id)

    def clear(self) -> None:
        """Remove all documents."""
        self._documents.clear()
        self._embeddings = None
        self._id_to_index.clear()
        self._save()
        logger.info("Vector store cleared")

    def __len__(self) -> int:
        return len(self._documents)


class PineconeIndex:
    """
    Read-only client for a Pinecone index.

    Example:
        index = PineconeIndex(api_key="pc-...", host="medical-chatbot-abc.svc.pinecone.io")
        matches = await index.query(vector, top_k=5)
    """

    API_VERSION = "2024-07"

    def __init__(
        self,
        api_key: str,
        host: str,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 15.0
    ):
        self.api_key = api_key
        self.url = f"https://{host.removeprefix('https://').rstrip('/')}/query"
        self._http = http_client
        self._timeout = timeout

    async def _post(self, payload: dict) -> httpx.Response:
        headers = {
            "Api-Key": self.api_key,
            "X-Pinecone-API-Version": self.API_VERSION,
        }
        if self._http is not None:
            return await self._http.post(self.url, json=payload, headers=headers)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await client.post(self.url, json=payload, headers=headers)

    async def query(self, vector: list[float], top_k: int = 5) -> list[VectorDocument]:
        """
        Query the index.

        Raises:
            httpx.HTTPStatusError: If Pinecone rejects the query
        """
        response = await self._post({
            "vector": vector,
            "topK": top_k,
            "includeMetadata": True,
        })
        response.raise_for_status()

        documents = []
        for match in response.json().get("matches") or []:
            metadata = match.get("metadata") or {}
            documents.append(VectorDocument(
                id=str(match.get("id", "")),
                content=metadata.get("text") or metadata.get("content") or "",
                embedding=[],
                metadata=metadata,
                score=match.get("score"),
            ))
        return documents
