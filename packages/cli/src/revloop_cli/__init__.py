"""revloop command line interface."""
