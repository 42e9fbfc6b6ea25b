"""Run transcripts persisted under ``.autoship/runs/`` after every turn."""

import hashlib
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from autoship.core.loop import LoopObserver, LoopResult
from autoship.providers.messages import Message


class TranscriptRecorder(LoopObserver):
    """
    Checkpoints the conversation to ``.autoship/runs/{run_id}.yaml``.

    The file is rewritten at the end of each turn, so an interrupted run
    still leaves a readable record of how far it got.
    """

    def __init__(self, autoship_dir: Path, prompt: str, model: str, run_id: Optional[str] = None):
        self.runs_dir = Path(autoship_dir) / "runs"
        self.runs_dir.mkdir(parents=True, exist_ok=True)
        self.started_at = datetime.now(timezone.utc).isoformat()
        self.run_id = run_id or self._generate_run_id(prompt)
        self.prompt = prompt
        self.model = model
        self.path = self.runs_dir / f"{self.run_id}.yaml"

    @staticmethod
    def _generate_run_id(prompt: str) -> str:
        raw = f"{prompt}:{datetime.now(timezone.utc).isoformat()}"
        return hashlib.sha256(raw.encode()).hexdigest()[:12]

    def on_turn_end(self, turn: int, messages: List[Message]) -> None:
        self._checkpoint({"status": "running", "turns": turn, "messages": messages})

    def on_finish(self, result: LoopResult) -> None:
        self._checkpoint({
            "status": result.status.value,
            "turns": result.turns,
            "messages": result.messages,
            "token_usage": result.token_usage,
            "tool_calls": result.tool_calls,
            "completed_at": datetime.now(timezone.utc).isoformat(),
        })

    def load(self) -> Optional[Dict[str, Any]]:
        if not self.path.exists():
            return None
        with open(self.path) as f:
            return yaml.safe_load(f) or None

    def _checkpoint(self, state: Dict[str, Any]) -> None:
        messages = state.pop("messages")
        data = {
            "run_id": self.run_id,
            "model": self.model,
            "prompt": self.prompt,
            "started_at": self.started_at,
            "updated_at": datetime.now(timezone.utc).isoformat(),
            **state,
            "messages": [m.to_api() for m in messages],
        }
        with open(self.path, "w") as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False, allow_unicode=True)
