"""Running the external review agent CLI."""
