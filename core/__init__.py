"""Shared building blocks for process launching, configuration and console output."""
