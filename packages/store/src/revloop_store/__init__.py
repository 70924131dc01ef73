"""revloop store: the dedup ledger and its persistence backends."""
