"""Backup lifecycle services.

This package provides:
- Local and remote (Google Drive) snapshot stores
- The OAuth2 credential state machine and token exchange
- Retention planning
- Scheduling and orchestration of backup runs
"""
