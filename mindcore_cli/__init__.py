"""Configuration surfaces for mindcore: settings, providers and agent profiles."""

__version__ = "0.1.0"
