"""
Knowledge graph core.

  - store:       SQLite system of record for nodes, edges and feedback
  - embedder:    text -> vector via the embedding provider
  - similarity:  semantic search and node-to-node similarity
  - graph:       influence, neighbourhoods, clusters, bridges (networkx)
  - recommender: typed link suggestions
"""
