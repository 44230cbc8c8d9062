"""think-mcp server command line interface."""
