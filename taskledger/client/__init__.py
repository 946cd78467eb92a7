"""Python client for the taskledger API.

    settings = ClientSettings.from_env()
    api = LedgerClient(settings)
    workflow = TaskWorkflow(api, controller)
"""
from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

POLL_MIN_SECONDS = 20.0
POLL_MAX_SECONDS = 30.0


@dataclass
class ClientSettings:
    base_url: str = "http://localhost:5000"
    token: str | None = None
    timeout: float = 20.0
    poll_interval: float = POLL_MAX_SECONDS

    def __post_init__(self):
        self.base_url = self.base_url.rstrip("/")
        # refresh is pull-only, on a fixed 20-30 s cadence
        self.poll_interval = min(max(float(self.poll_interval), POLL_MIN_SECONDS), POLL_MAX_SECONDS)

    @classmethod
    def from_env(cls) -> "ClientSettings":
        load_dotenv()
        return cls(
            base_url=os.getenv("TASKLEDGER_URL", cls.base_url),
            token=os.getenv("TASKLEDGER_TOKEN") or None,
            timeout=float(os.getenv("TASKLEDGER_TIMEOUT", cls.timeout)),
            poll_interval=float(os.getenv("TASKLEDGER_POLL_INTERVAL", cls.poll_interval)),
        )


from .api import LedgerClient  # noqa: E402
from .collector import DecisionCollector  # noqa: E402
from .dialogs import DialogController, TaskWorkflow  # noqa: E402
from .poller import Poller  # noqa: E402
from .speculative import SpeculativeCache  # noqa: E402

__all__ = [
    "ClientSettings",
    "LedgerClient",
    "DecisionCollector",
    "DialogController",
    "TaskWorkflow",
    "Poller",
    "SpeculativeCache",
]
