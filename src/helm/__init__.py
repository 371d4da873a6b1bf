"""Helm chat bridge: browser chat streamed from the assistant CLI."""
