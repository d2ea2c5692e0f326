"""agent-browser: browser automation CLI for AI agents."""

__version__ = "0.1.0"
