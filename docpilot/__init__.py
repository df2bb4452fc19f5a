"""docpilot: an LLM-in-the-loop Markdown document editing agent."""

__version__ = "0.1.0"
