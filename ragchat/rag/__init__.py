"""
RAG (Retrieval Augmented Generation) core of the ragchat backend.

Grounds answers in a single knowledge document and refuses when the
retrieved context cannot support an answer.

Components:
    - chunker: Splits the knowledge document into passages at marker lines
    - embedder: Embedding backend client, text cleaning and cosine similarity
    - chunk_store: Immutable vector store with a persisted JSON cache
    - filters: Composable filter stages over the ranked passage list
    - retriever: Ranks passages for a query and applies the filter stages
    - groundedness: Post-hoc validation of generated answers
    - text_utils: Normalisation, Spanish stopwords and keyword extraction
"""
