from __future__ import annotations

import itertools
import logging
import queue
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Union

from .errors import TubescribeError
from .services import (
    ReportGenerator,
    Storage,
    TranscriptFetcher,
    TranscriptSnippet,
    format_transcript,
    normalize_identifier,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Progress:
    job_id: int
    fraction: float


@dataclass(frozen=True)
class Status:
    job_id: int
    text: str


@dataclass(frozen=True)
class Log:
    job_id: int
    text: str


@dataclass(frozen=True)
class Complete:
    job_id: int


@dataclass(frozen=True)
class Failed:
    job_id: int
    message: str


ProgressMessage = Union[Progress, Status, Log, Complete, Failed]


@dataclass(frozen=True)
class JobRequest:
    identifier: str
    languages: tuple[str, ...] = ("en", "es")
    preserve_formatting: bool = True
    generate_report: bool = True


class JobCancelled(TubescribeError):
    def __init__(self) -> None:
        super().__init__("Cancelled")


def run_pipeline(
    job_id: int,
    request: JobRequest,
    fetcher: TranscriptFetcher,
    generator: ReportGenerator,
    storage: Storage,
    emit: Callable[[ProgressMessage], None],
    cancelled: Callable[[], bool] = lambda: False,
) -> bool:
    def log(text: str) -> None:
        emit(Log(job_id, text))

    def status(text: str) -> None:
        emit(Status(job_id, text))
        log(text)

    def checkpoint() -> None:
        if cancelled():
            raise JobCancelled()

    try:
        status("Validating identifier...")
        identifier = normalize_identifier(request.identifier)
        emit(Progress(job_id, 0.1))
        checkpoint()

        snippets: list[TranscriptSnippet] | None = None
        if storage.transcript_exists(identifier):
            log(f"Transcript for {identifier} already stored, skipping fetch.")
            emit(Progress(job_id, 0.6))
        else:
            status(f"Fetching transcript for {identifier}...")
            emit(Progress(job_id, 0.25))
            snippets = fetcher.fetch(identifier, list(request.languages), request.preserve_formatting)
            emit(Progress(job_id, 0.5))
            log(f"Fetched {len(snippets)} transcript lines.")
            checkpoint()

            status("Saving transcript...")
            path = storage.save_transcript(identifier, format_transcript(snippets))
            emit(Progress(job_id, 0.6))
            log(f"Saved {path.name}.")

        if request.generate_report:
            checkpoint()
            if storage.report_exists(identifier):
                log(f"Report for {identifier} already stored, skipping generation.")
            else:
                status("Generating report...")
                emit(Progress(job_id, 0.7))
                if snippets is not None:
                    transcript_text = "\n".join(format_transcript(snippets))
                else:
                    transcript_text = storage.load_transcript(identifier)
                report = generator.generate(transcript_text)
                emit(Progress(job_id, 0.9))
                checkpoint()

                status("Saving report...")
                path = storage.save_report(identifier, report)
                log(f"Saved {path.name}.")

        emit(Progress(job_id, 1.0))
        status("Done.")
        emit(Complete(job_id))
        return True
    except TubescribeError as exc:
        logger.info("job %s failed: %s", job_id, exc)
        log(f"Error: {exc}")
        emit(Failed(job_id, str(exc)))
    except Exception as exc:
        logger.exception("job %s crashed", job_id)
        log(f"Unexpected error: {exc}")
        emit(Failed(job_id, f"Unexpected error: {exc}"))
    return False


def generate_report_for(raw_identifier: str, generator: ReportGenerator, storage: Storage) -> Path:
    identifier = normalize_identifier(raw_identifier)
    transcript_text = storage.load_transcript(identifier)
    report = generator.generate(transcript_text)
    return storage.save_report(identifier, report)


class TaskOrchestrator:
    def __init__(
        self,
        storage: Storage,
        fetcher_factory: Callable[[], TranscriptFetcher],
        generator_factory: Callable[[], ReportGenerator],
    ) -> None:
        self.storage = storage
        self.fetcher_factory = fetcher_factory
        self.generator_factory = generator_factory
        self.channel: queue.Queue[ProgressMessage] = queue.Queue()
        self._ids = itertools.count(1)
        self._jobs: dict[int, tuple[threading.Thread, threading.Event]] = {}
        self._lock = threading.Lock()

    def spawn(self, request: JobRequest) -> int:
        job_id = next(self._ids)
        cancel_event = threading.Event()
        thread = threading.Thread(
            target=self._run,
            args=(job_id, request, cancel_event),
            name=f"job-{job_id}",
            daemon=True,
        )
        with self._lock:
            self._jobs[job_id] = (thread, cancel_event)
        thread.start()
        logger.info("spawned job %s for %s", job_id, request.identifier)
        return job_id

    def cancel(self, job_id: int) -> bool:
        with self._lock:
            job = self._jobs.get(job_id)
        if job is None:
            return False
        job[1].set()
        logger.info("cancellation requested for job %s", job_id)
        return True

    def drain(self) -> list[ProgressMessage]:
        messages: list[ProgressMessage] = []
        while True:
            try:
                messages.append(self.channel.get_nowait())
            except queue.Empty:
                return messages

    def shutdown(self, timeout: float = 1.0) -> None:
        with self._lock:
            jobs = list(self._jobs.values())
        for _, cancel_event in jobs:
            cancel_event.set()
        for thread, _ in jobs:
            thread.join(timeout)

    def _run(self, job_id: int, request: JobRequest, cancel_event: threading.Event) -> None:
        try:
            try:
                fetcher = self.fetcher_factory()
                generator = self.generator_factory()
            except Exception as exc:
                logger.exception("could not start job %s", job_id)
                self.channel.put(Failed(job_id, f"Could not start job: {exc}"))
                return
            run_pipeline(
                job_id,
                request,
                fetcher,
                generator,
                self.storage,
                self.channel.put,
                cancel_event.is_set,
            )
        finally:
            with self._lock:
                self._jobs.pop(job_id, None)
