"""Index Markdown notes with YAML front matter and search them from the terminal."""

__version__ = "0.1.0"
