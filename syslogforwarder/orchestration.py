"""Distribution of sources over workers and periodic refresh of the sources."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Protocol

from .sources import Resource

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Task:
    """A unit of work: ``name`` is what a worker is handed."""

    name: Any
    instances: int = 1


class Communicator:
    """Talks to Aggregator workers on behalf of the orchestrator."""

    def list(self, worker: Any) -> list[Any]:
        return worker.list()

    def add(self, worker: Any, task: Any) -> None:
        worker.add(task)

    def remove(self, worker: Any, task: Any) -> None:
        if task is not None:
            worker.remove(task.guid)


class Orchestrator:
    """Keeps the tasks running on the workers in line with the desired tasks."""

    def __init__(self, communicator: Any, logger: logging.Logger | None = None) -> None:
        self._communicator = communicator
        self._log = logger or log
        self._lock = threading.Lock()
        self._workers: list[Any] = []
        self._tasks: list[Task] = []

    def add_worker(self, worker: Any) -> None:
        with self._lock:
            self._workers.append(worker)

    def update_tasks(self, tasks: list[Task]) -> None:
        with self._lock:
            self._tasks = list(tasks)

    def next_term(self) -> None:
        """Add missing tasks to workers and remove the ones no longer wanted."""
        with self._lock:
            workers = list(self._workers)
            tasks = list(self._tasks)

        actual: dict[int, list[Any]] = {}
        for index, worker in enumerate(workers):
            try:
                actual[index] = list(self._communicator.list(worker))
            except Exception as err:
                self._log.warning("failed to list tasks of worker: %s", err)
        if not actual:
            return

        desired: dict[int, list[Any]] = {index: [] for index in actual}
        for task in tasks:
            wanted = min(max(task.instances, 0), len(actual))
            holders = [
                i for i in actual if task.name in actual[i] and task.name not in desired[i]
            ][:wanted]
            for i in holders:
                desired[i].append(task.name)
            for _ in range(wanted - len(holders)):
                free = [i for i in actual if task.name not in desired[i]]
                if not free:
                    break
                target = min(free, key=lambda i: len(desired[i]))
                desired[target].append(task.name)

        for index, current in actual.items():
            worker = workers[index]
            for name in current:
                if name not in desired[index]:
                    self._call(self._communicator.remove, worker, name)
            for name in desired[index]:
                if name not in current:
                    self._call(self._communicator.add, worker, name)

    def _call(self, action: Any, worker: Any, name: Any) -> None:
        try:
            action(worker, name)
        except Exception as err:
            self._log.warning("failed to update task %s: %s", name, err)


class _Provider(Protocol):
    def resources(self) -> list[Resource]: ...


class SourceManager:
    """Periodically fetches the sources and hands them to the orchestrator."""

    def __init__(
        self, provider: _Provider, orchestrator: Any, interval: float | timedelta
    ) -> None:
        if isinstance(interval, timedelta):
            interval = interval.total_seconds()
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._provider = provider
        self._orchestrator = orchestrator
        self._interval = float(interval)
        self._stopped = threading.Event()

    def start(self) -> None:
        """Update now and then every interval until stop() is called."""
        self._stopped.clear()
        self.update_sources()
        while not self._stopped.wait(self._interval):
            self.update_sources()

    def stop(self) -> None:
        self._stopped.set()

    def update_sources(self) -> None:
        try:
            resources = self._provider.resources()
        except Exception as err:
            log.warning("failed to fetch sources: %s", err)
            return
        self._orchestrator.update_tasks([Task(name=r, instances=1) for r in resources])
        self._orchestrator.next_term()