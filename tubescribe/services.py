from __future__ import annotations

import html
import logging
import os
import re
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any
from urllib.parse import parse_qs, urlparse
from xml.etree import ElementTree

import requests

from .config import REPORT_OPT_IN_ENV
from .errors import CollaboratorError, StorageError, ValidationError
from .util import normalize_markdown_text, normalize_text, truncate

logger = logging.getLogger(__name__)

IDENTIFIER_RE = re.compile(r"[A-Za-z0-9_-]{1,64}")
URL_PATH_PREFIXES = ("/shorts/", "/embed/", "/live/", "/v/")
BARE_HOST_PREFIXES = ("www.", "m.youtube.", "youtube.", "music.youtube.", "youtu.be")

WATCH_URL = "https://www.youtube.com/watch?v={identifier}"
INNERTUBE_PLAYER_URL = "https://www.youtube.com/youtubei/v1/player?key={api_key}"
INNERTUBE_CONTEXT = {"client": {"clientName": "ANDROID", "clientVersion": "20.10.38"}}
API_KEY_RE = re.compile(r'"INNERTUBE_API_KEY":\s*"([a-zA-Z0-9_-]+)"')
REQUEST_HEADERS = {"Accept-Language": "en-US,en;q=0.8"}
FORMATTING_TAGS = ("strong", "em", "b", "i", "mark", "small", "del", "ins", "sub", "sup")
FORMATTING_TAG_RE = re.compile(r"<(?!/?(?:%s)\b)[^>]*>" % "|".join(FORMATTING_TAGS), re.IGNORECASE)
ANY_TAG_RE = re.compile(r"<[^>]*>")

TRANSCRIPT_PREFIX = "transcript_"
TRANSCRIPT_SUFFIX = ".txt"
REPORT_PREFIX = "report_"
REPORT_SUFFIX = ".md"

REPORT_PROMPT = """You are a meticulous content analyst. Extract every meaningful element of the
video transcript below without summarising anything away. Keep the original
chronological order, keep timestamps where the transcript has them and quote
relevant passages verbatim. Do not add outside context or opinions.

Answer in Markdown with these sections:

## 1. Metadata
A two-column table (Field | Value) with approximate duration, number of lines,
dominant language, main speaker (if it can be inferred) and other participants.

## 2. Chronological index
One bullet per topic change: `MM:SS - MM:SS topic`.

## 3. Line-by-line breakdown
A table with columns: # | Time | Speaker | Literal text | Keywords | Tone.
Use "Unk" when the speaker is unknown.

## 4. Entities and concepts
A table with columns: Entity | Type | Mentions | First mention.

## 5. Questions asked
Every question the speaker asks, with its timestamp.

## 6. Key quotes
Every quote of fifteen words or more.

## 7. Calls to action
Each invitation to subscribe, comment, buy, and so on, with its timestamp.

## 8. External resources
Links, books, courses or tools mentioned in the transcript.

## 9. Rhetorical structure
Opening hook, problem, solution or climax, and closing, each with a timestamp.

## 10. Keywords
Keywords that appear at least twice, by descending frequency.

## 11. Detailed executive summary
A complete summary of the content that leaves nothing out.

<TRANSCRIPT>
{transcript}
</TRANSCRIPT>
"""


def extract_identifier(raw: str) -> str:
    candidate = raw.strip()
    if not candidate:
        return ""
    if "://" not in candidate and candidate.lower().startswith(BARE_HOST_PREFIXES):
        candidate = f"https://{candidate}"
    if "://" not in candidate:
        return candidate

    parsed = urlparse(candidate)
    host = (parsed.hostname or "").lower()
    if host == "youtu.be" or host.endswith(".youtu.be"):
        return parsed.path.lstrip("/").split("/")[0]
    query_id = parse_qs(parsed.query).get("v", [""])[0]
    if query_id:
        return query_id
    for prefix in URL_PATH_PREFIXES:
        if parsed.path.startswith(prefix):
            return parsed.path[len(prefix) :].split("/")[0]
    return ""


def normalize_identifier(raw: str) -> str:
    candidate = extract_identifier(raw)
    if not candidate:
        raise ValidationError("Enter a video URL or identifier.")
    if not IDENTIFIER_RE.fullmatch(candidate):
        raise ValidationError(f"Invalid video identifier: {truncate(candidate, 40)}")
    return candidate


@dataclass(frozen=True)
class TranscriptSnippet:
    start: float
    duration: float
    text: str


def format_transcript(snippets: list[TranscriptSnippet]) -> list[str]:
    return [
        f"[{snippet.start:.1f}-{snippet.start + snippet.duration:.1f}s] {snippet.text}"
        for snippet in snippets
    ]


def strip_markup(text: str, preserve_formatting: bool) -> str:
    pattern = FORMATTING_TAG_RE if preserve_formatting else ANY_TAG_RE
    return pattern.sub("", text)


def parse_transcript_xml(xml_text: str, preserve_formatting: bool) -> list[TranscriptSnippet]:
    try:
        root = ElementTree.fromstring(xml_text)
    except ElementTree.ParseError as exc:
        raise CollaboratorError(f"Transcript payload was not valid XML ({exc}).") from exc

    snippets: list[TranscriptSnippet] = []
    for element in root.iter("text"):
        text = html.unescape(element.text or "")
        text = strip_markup(text, preserve_formatting)
        text = " ".join(text.split())
        if not text:
            continue
        try:
            start = float(element.attrib.get("start", "0"))
            duration = float(element.attrib.get("dur", "0"))
        except ValueError:
            start, duration = 0.0, 0.0
        snippets.append(TranscriptSnippet(start=start, duration=duration, text=text))
    return snippets


def select_caption_track(
    tracks: list[dict[str, Any]],
    preferred_languages: list[str],
) -> dict[str, Any] | None:
    if not tracks:
        return None
    if not preferred_languages:
        manual = [track for track in tracks if track.get("kind") != "asr"]
        return (manual or tracks)[0]
    for language in preferred_languages:
        lowered = language.lower()
        matches = [track for track in tracks if str(track.get("languageCode", "")).lower() == lowered]
        manual = [track for track in matches if track.get("kind") != "asr"]
        if manual:
            return manual[0]
        if matches:
            return matches[0]
    return None


class TranscriptFetcher:
    def __init__(self, session: requests.Session | None = None, timeout_seconds: int = 25) -> None:
        self.session = session or requests.Session()
        self.timeout_seconds = timeout_seconds

    def fetch(
        self,
        identifier: str,
        preferred_languages: list[str],
        preserve_formatting: bool,
    ) -> list[TranscriptSnippet]:
        api_key = self._fetch_api_key(identifier)
        tracks = self._fetch_caption_tracks(identifier, api_key)
        track = select_caption_track(tracks, preferred_languages)
        if track is None:
            available = ", ".join(sorted({str(t.get("languageCode", "?")) for t in tracks})) or "none"
            wanted = ", ".join(preferred_languages) or "any"
            raise CollaboratorError(f"No transcript for languages [{wanted}]; available: {available}.")

        logger.info("fetching %s captions for %s", track.get("languageCode"), identifier)
        response = self._request("GET", str(track.get("baseUrl", "")).replace("&fmt=srv3", ""))
        snippets = parse_transcript_xml(response.text, preserve_formatting)
        if not snippets:
            raise CollaboratorError("Transcript was empty.")
        return snippets

    def _fetch_api_key(self, identifier: str) -> str:
        response = self._request("GET", WATCH_URL.format(identifier=identifier))
        match = API_KEY_RE.search(response.text)
        if not match:
            raise CollaboratorError("Watch page did not expose an API key (consent wall or rate limit).")
        return match.group(1)

    def _fetch_caption_tracks(self, identifier: str, api_key: str) -> list[dict[str, Any]]:
        response = self._request(
            "POST",
            INNERTUBE_PLAYER_URL.format(api_key=api_key),
            json={"context": INNERTUBE_CONTEXT, "videoId": identifier},
        )
        try:
            data = response.json()
        except ValueError as exc:
            raise CollaboratorError("Player response was not JSON.") from exc

        playability = data.get("playabilityStatus") or {}
        status = playability.get("status", "OK")
        if status != "OK":
            reason = normalize_text(playability.get("reason", "")) or status
            raise CollaboratorError(f"Video is unavailable: {reason}")
        captions = (data.get("captions") or {}).get("playerCaptionsTracklistRenderer") or {}
        tracks = captions.get("captionTracks") or []
        if not tracks:
            raise CollaboratorError("Transcripts are disabled or unavailable for this video.")
        return tracks

    def _request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        try:
            response = self.session.request(
                method,
                url,
                headers=REQUEST_HEADERS,
                timeout=self.timeout_seconds,
                **kwargs,
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            raise CollaboratorError(f"Transcript request failed ({normalize_text(str(exc))[:160]}).") from exc
        return response


def sanitize_ollama_host(host: str) -> str:
    return host.strip().rstrip("/")


def build_report_prompt(transcript_text: str) -> str:
    return REPORT_PROMPT.format(transcript=transcript_text.strip())


class ReportGenerator:
    def __init__(
        self,
        ollama_host: str,
        ollama_model: str,
        timeout_seconds: int,
        allowed: bool,
        session: requests.Session | None = None,
    ) -> None:
        self.ollama_host = ollama_host
        self.ollama_model = ollama_model
        self.timeout_seconds = timeout_seconds
        self.allowed = allowed
        self.session = session or requests.Session()

    def generate(self, transcript_text: str) -> str:
        if not self.allowed:
            raise CollaboratorError(
                f"Report generation is not enabled; set {REPORT_OPT_IN_ENV}=1 to allow it."
            )
        base = sanitize_ollama_host(self.ollama_host)
        if not base:
            raise CollaboratorError("Missing Ollama host.")
        if not self.ollama_model:
            raise CollaboratorError("No report model configured.")
        if not transcript_text.strip():
            raise CollaboratorError("Transcript is empty; nothing to report on.")

        payload = {
            "model": self.ollama_model,
            "prompt": build_report_prompt(transcript_text),
            "stream": False,
            "options": {"temperature": 0.2},
        }
        try:
            response = self.session.post(
                f"{base}/api/generate",
                json=payload,
                timeout=self.timeout_seconds,
            )
            response.raise_for_status()
            result = response.json()
        except requests.RequestException as exc:
            raise CollaboratorError(f"Report request failed ({normalize_text(str(exc))[:160]}).") from exc
        except ValueError as exc:
            raise CollaboratorError("Report response was not JSON.") from exc

        text = normalize_markdown_text(result.get("response", ""))
        if not text:
            raise CollaboratorError("Report response was empty.")
        return text


class ArtifactKind(Enum):
    TRANSCRIPT = "Transcript"
    REPORT = "Report"


@dataclass(frozen=True)
class ArtifactEntry:
    path: Path
    name: str
    kind: ArtifactKind
    size: int
    modified: datetime

    @property
    def identifier(self) -> str:
        if self.kind is ArtifactKind.TRANSCRIPT:
            return self.name[len(TRANSCRIPT_PREFIX) : -len(TRANSCRIPT_SUFFIX)]
        return self.name[len(REPORT_PREFIX) : -len(REPORT_SUFFIX)]


def checked_identifier(identifier: str) -> str:
    if not IDENTIFIER_RE.fullmatch(identifier):
        raise StorageError(f"Refusing unsafe artifact identifier: {truncate(identifier, 40)}")
    return identifier


class Storage:
    def __init__(self, root: Path | str = ".") -> None:
        self.root = Path(root)
        self.transcripts_dir = self.root / "transcripts"
        self.reports_dir = self.root / "reports"

    def ensure_directories(self) -> None:
        try:
            self.transcripts_dir.mkdir(parents=True, exist_ok=True)
            self.reports_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"Could not create artifact directories: {exc}") from exc

    def transcript_path(self, identifier: str) -> Path:
        return self.transcripts_dir / f"{TRANSCRIPT_PREFIX}{checked_identifier(identifier)}{TRANSCRIPT_SUFFIX}"

    def report_path(self, identifier: str) -> Path:
        return self.reports_dir / f"{REPORT_PREFIX}{checked_identifier(identifier)}{REPORT_SUFFIX}"

    def transcript_exists(self, identifier: str) -> bool:
        return self.transcript_path(identifier).is_file()

    def report_exists(self, identifier: str) -> bool:
        return self.report_path(identifier).is_file()

    def save_transcript(self, identifier: str, lines: list[str]) -> Path:
        return self._write(self.transcript_path(identifier), "\n".join(lines))

    def save_report(self, identifier: str, text: str) -> Path:
        return self._write(self.report_path(identifier), text)

    def load_transcript(self, identifier: str) -> str:
        path = self.transcript_path(identifier)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise StorageError(f"No stored transcript for {identifier}.") from exc
        except OSError as exc:
            raise StorageError(f"Could not read {path}: {exc}") from exc

    def read_artifact(self, path: Path | str) -> str:
        resolved = self._resolve_managed(path)
        try:
            return resolved.read_text(encoding="utf-8", errors="replace")
        except OSError as exc:
            raise StorageError(f"Could not read {resolved.name}: {exc}") from exc

    def list_artifacts(self) -> list[ArtifactEntry]:
        self.ensure_directories()
        entries: list[ArtifactEntry] = []
        managed = (
            (self.transcripts_dir, TRANSCRIPT_PREFIX, TRANSCRIPT_SUFFIX, ArtifactKind.TRANSCRIPT),
            (self.reports_dir, REPORT_PREFIX, REPORT_SUFFIX, ArtifactKind.REPORT),
        )
        try:
            for directory, prefix, suffix, kind in managed:
                for path in directory.iterdir():
                    name = path.name
                    if not (name.startswith(prefix) and name.endswith(suffix)) or not path.is_file():
                        continue
                    stat = path.stat()
                    entries.append(
                        ArtifactEntry(
                            path=path,
                            name=name,
                            kind=kind,
                            size=stat.st_size,
                            modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                        )
                    )
        except OSError as exc:
            raise StorageError(f"Could not list artifacts: {exc}") from exc
        entries.sort(key=lambda entry: (entry.modified, entry.name), reverse=True)
        return entries

    def delete(self, path: Path | str) -> None:
        if Path(path).is_symlink():
            logger.warning("refused to delete symbolic link %s", path)
            raise StorageError(f"Refusing to delete a symbolic link: {Path(path).name}")
        resolved = self._resolve_managed(path)
        try:
            resolved.unlink()
        except OSError as exc:
            raise StorageError(f"Could not delete {resolved.name}: {exc}") from exc
        logger.info("deleted artifact %s", resolved)

    def _resolve_managed(self, path: Path | str) -> Path:
        resolved = Path(path).resolve()
        for directory in (self.transcripts_dir, self.reports_dir):
            base = directory.resolve()
            if resolved != base and resolved.is_relative_to(base):
                if not resolved.is_file():
                    raise StorageError(f"Not an artifact file: {resolved.name}")
                return resolved
        logger.warning("refused access outside managed directories: %s", resolved)
        raise StorageError(f"Refusing path outside the managed directories: {path}")

    def _write(self, path: Path, content: str) -> Path:
        self.ensure_directories()
        tmp = path.with_name(f".{path.name}.{os.getpid()}.{threading.get_ident()}.tmp")
        try:
            tmp.write_text(content, encoding="utf-8")
            os.replace(tmp, path)
        except OSError as exc:
            tmp.unlink(missing_ok=True)
            raise StorageError(f"Could not write {path.name}: {exc}") from exc
        logger.info("saved %s", path)
        return path
