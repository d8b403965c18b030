"""Fixed ordered step lists."""

from __future__ import annotations

from typing import Iterator, List, Optional, Protocol, Sequence

from .models import Progress, Step


class Ledger(Protocol):
    def is_completed(self, name: str) -> bool: ...

    def is_resolved(self, name: str) -> bool: ...


class StepRegistry:
    """An immutable, linearly ordered list of steps.

    Lookups never touch state, so they are safe to call for status display.
    """

    def __init__(self, steps: Sequence[Step]) -> None:
        names = [step.name for step in steps]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate step names in {names}")
        if any(not name for name in names):
            raise ValueError("Every step needs a name")
        self._steps = tuple(steps)
        self._by_name = {step.name: step for step in self._steps}

    def __iter__(self) -> Iterator[Step]:
        return iter(self._steps)

    def __len__(self) -> int:
        return len(self._steps)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    @property
    def names(self) -> List[str]:
        return [step.name for step in self._steps]

    def get(self, name: str) -> Step:
        return self._by_name[name]

    def index_of(self, name: str) -> int:
        return self.names.index(name)

    def next_incomplete_step(self, ledger: Ledger) -> Optional[str]:
        """First step that is neither completed nor skipped; None when all are done."""
        for step in self._steps:
            if not ledger.is_resolved(step.name):
                return step.name
        return None

    def progress(self, ledger: Ledger) -> Progress:
        completed = sum(1 for step in self._steps if ledger.is_completed(step.name))
        resolved = sum(1 for step in self._steps if ledger.is_resolved(step.name))
        return Progress(
            completed=completed,
            skipped=resolved - completed,
            total=len(self._steps),
            next_step=self.next_incomplete_step(ledger),
        )

    def can_resume(self, ledger: Ledger) -> bool:
        """True when some work is recorded and some remains."""
        progress = self.progress(ledger)
        return progress.resolved > 0 and progress.next_step is not None
