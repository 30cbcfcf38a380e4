"""Snapshot stores: local directory and remote Drive folder."""
