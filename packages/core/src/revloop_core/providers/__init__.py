"""Pull request sources."""
