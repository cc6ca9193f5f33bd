"""arq worker settings module.

Import path for arq CLI: arq academy.workers.settings.WorkerSettings
"""

from __future__ import annotations

from academy.workers.expiry_worker import WorkerSettings

__all__ = ["WorkerSettings"]
