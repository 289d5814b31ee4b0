"""
Scheduler Task — a handler bound to a recurrence rule.

A Task knows who it is (``id``), what to run (``handler``) and when
(``rule``). It does not own a timer; the Scheduler decides when to arm one.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from cadence.core.errors import ArgumentError
from cadence.scheduler.recurrence import RecurrenceRule, RecurrenceSpec

logger = logging.getLogger(__name__)

Handler = Callable[[], Any]


def new_task_id() -> str:
    return uuid.uuid4().hex


@dataclass(eq=False)
class Task:
    """A scheduled handler."""

    handler: Handler
    rule: RecurrenceRule

    id: str = field(default_factory=new_task_id)
    last_run: datetime | None = None   # occurrence most recently fired
    created_at: datetime = field(default_factory=datetime.now)

    @classmethod
    def create(
        cls,
        handler: Handler,
        spec: RecurrenceSpec | Mapping[str, Any] | None = None,
        *,
        id: str | None = None,
        **options: Any,
    ) -> Task:
        """
        Build a Task from a spec object, an options mapping, or keyword options.

        Raises:
            ArgumentError: handler is not callable, id is not a non-empty
                string, or both a spec object and keyword options were given.
            ValidationError: the recurrence options are malformed.
        """
        if not callable(handler):
            raise ArgumentError(
                f"Task handler must be callable, got {type(handler).__name__}",
                argument="handler",
            )
        if id is not None and (not isinstance(id, str) or not id):
            raise ArgumentError("Task id must be a non-empty string", argument="id")

        if isinstance(spec, RecurrenceSpec):
            if options:
                raise ArgumentError(
                    "Pass either a RecurrenceSpec or recurrence options, not both",
                    argument="spec",
                )
            rule = RecurrenceRule(spec)
        else:
            rule = RecurrenceRule.from_options(spec, **options)

        return cls(handler=handler, rule=rule, id=id or new_task_id())

    def next_occurrence(self, now: datetime | None = None) -> datetime | None:
        """
        Next occurrence strictly after ``now`` (default: current time).

        Never returns an occurrence at or before ``last_run``, so a timer
        that fires slightly early cannot replay the same occurrence.
        """
        reference = now or datetime.now()
        if self.last_run is not None and self.last_run > reference:
            reference = self.last_run
        return self.rule.next_after(reference)

    def fire(self, occurrence: datetime | None = None) -> Any:
        """Record the occurrence and invoke the handler, returning its result."""
        self.last_run = occurrence or datetime.now()
        logger.debug(f"Firing task {self.id!r} for {self.last_run:%Y-%m-%d %H:%M:%S}")
        return self.handler()

    @property
    def spec(self) -> RecurrenceSpec:
        return self.rule.spec

    @property
    def description(self) -> str:
        return self.rule.description
