"""Key-value store interface and bundled store clients."""
