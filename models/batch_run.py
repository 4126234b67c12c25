"""A single analyze/retry invocation over a batch of items."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple
from uuid import uuid4

from utils.cancellation import CancellationToken


@dataclass
class BatchRun:
    """Transient run state: one cancellation token shared by all candidates."""

    item_ids: Tuple[str, ...]
    run_id: str = field(default_factory=lambda: uuid4().hex)
    token: CancellationToken = field(default_factory=CancellationToken)
    running: bool = True
    succeeded: int = 0
    failed: int = 0
    started_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None

    def finish(self) -> None:
        self.running = False
        self.finished_at = time.time()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "item_ids": list(self.item_ids),
            "running": self.running,
            "cancelled": self.token.cancelled,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }
