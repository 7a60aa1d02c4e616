"""Write-only step log of a mapping run, for debugging rule trees."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from typing import Dict, List


@dataclass(frozen=True)
class TraceStep:
    seq: int
    depth: int
    node_name: str
    entity_info: str
    message: str


class MappingTrace:
    """Append-only list of traversal steps.

    The engine only ever writes to it, so a run produces the same regions
    whether or not a trace is attached.
    """

    def __init__(self):
        self._steps: List[TraceStep] = []

    def add_step(self, depth: int, node_name: str, entity_info: str, message: str) -> TraceStep:
        step = TraceStep(len(self._steps) + 1, int(depth), node_name, entity_info, message)
        self._steps.append(step)
        return step

    @property
    def steps(self) -> List[TraceStep]:
        return list(self._steps)

    def __len__(self) -> int:
        return len(self._steps)

    def render(self, indent: str = "  ") -> str:
        lines = []
        for step in self._steps:
            prefix = indent * step.depth
            lines.append(f"{prefix}[{step.node_name}] {step.entity_info}: {step.message}")
        return "\n".join(lines)

    def to_dicts(self) -> List[Dict[str, object]]:
        return [asdict(step) for step in self._steps]

    def to_jsonl(self) -> str:
        return "\n".join(
            json.dumps(d, sort_keys=True, separators=(",", ":"), ensure_ascii=True)
            for d in self.to_dicts()
        )
