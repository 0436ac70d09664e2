"""ooda-computer: MCP tool server for file search, fuzzy matching and exact edits."""

__version__ = "0.3.0"
