"""
Incremental fulltext indexing engine.

- tokenize: text normalization, exact word tokens and lossy trigrams
- diff: token diff between the previous and next text of a document field
- planner: ordered write plans across the fulltext tables
- stats: document-frequency bookkeeping
- batching: chunked batch writes and gets with unprocessed retry
- backend: the engine facade used by indexers and query planners
"""
