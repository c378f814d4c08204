"""Progress events streamed from the execution unit to callers.

Classes:
    ProgressEvent: One normalised notification (phase, label, optional percentage).
    ProgressNormaliser: Turns raw model-loader notifications into ProgressEvents for a single load.

Attributes:
    ProgressSink: Callable that receives ProgressEvents; passed explicitly by callers.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional

PHASE_DOWNLOADING = "downloading"
PHASE_CACHED = "cached"
PHASE_READY = "ready"
PHASE_RUNNING = "running"


@dataclass(slots=True, frozen=True)
class ProgressEvent:
    phase: str
    label: str
    percent: float | None = None
    file: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"phase": self.phase, "label": self.label, "percent": self.percent}
        if self.file:
            payload["file"] = self.file
        return payload

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "ProgressEvent":
        percent = payload.get("percent")
        return cls(
            phase=str(payload.get("phase") or PHASE_RUNNING),
            label=str(payload.get("label") or ""),
            percent=float(percent) if percent is not None else None,
            file=payload.get("file"),
        )


ProgressSink = Callable[[ProgressEvent], None]


def emit(sink: Optional[ProgressSink], event: ProgressEvent) -> None:
    if sink is not None:
        sink(event)


class ProgressNormaliser:
    """
    Normalise raw loader notifications for one model load.

    Loaders report dictionaries with a `status` of `initiate`, `progress`
    (`loaded`/`total` bytes, optional `file`), `done` or `cached`. Only
    `progress` carries a percentage. A load that never downloads anything is
    reported as `cached` exactly once, with no percentage, followed by `ready`.
    """

    def __init__(self, sink: ProgressSink) -> None:
        self._sink = sink
        self._downloaded = False
        self._cached_reported = False
        self._last_percent: float | None = None
        self._finished = False

    def feed(self, raw: Mapping[str, Any]) -> None:
        if self._finished:
            return
        status = raw.get("status")
        if status == "progress":
            self._downloaded = True
            total = raw.get("total") or 0
            loaded = raw.get("loaded") or 0
            percent = round(min(100.0, loaded / total * 100.0), 1) if total > 0 else None
            if percent is not None and percent == self._last_percent:
                return
            self._last_percent = percent
            file_name = raw.get("file")
            label = f"Downloading {file_name}" if file_name else "Downloading model"
            self._sink(ProgressEvent(PHASE_DOWNLOADING, label, percent, file_name))
        elif status == "cached":
            self._report_cached()

    def finish(self) -> None:
        if self._finished:
            return
        if not self._downloaded:
            self._report_cached()
        self._finished = True
        self._sink(ProgressEvent(PHASE_READY, "Model ready", 100.0))

    def _report_cached(self) -> None:
        if self._downloaded or self._cached_reported:
            return
        self._cached_reported = True
        self._sink(ProgressEvent(PHASE_CACHED, "Loaded from local cache"))
