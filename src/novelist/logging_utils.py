from __future__ import annotations

import sys
from dataclasses import dataclass

_DEBUG_LOG = False


def set_debug_logging(enabled: bool) -> None:
    global _DEBUG_LOG
    _DEBUG_LOG = enabled


def debug_enabled() -> bool:
    return _DEBUG_LOG


def debug_log(message: str) -> None:
    if _DEBUG_LOG:
        print(f"[novelist debug] {message}", file=sys.stderr)


@dataclass(frozen=True)
class Diagnostic:
    """A non-fatal problem recorded while processing one item of a batch."""

    kind: str
    subject: str
    message: str

    def __str__(self) -> str:
        return f"{self.kind}: {self.subject}: {self.message}"


CHAPTER_UNREADABLE = "ChapterUnreadable"
DECODE_DEGRADED = "DecodeDegraded"
SCENE_UNPARSABLE = "SceneUnparsable"
BACKUP_UNREADABLE = "BackupUnreadable"


def record(diagnostics: list[Diagnostic], kind: str, subject: str, message: str) -> Diagnostic:
    diagnostic = Diagnostic(kind=kind, subject=subject, message=message)
    diagnostics.append(diagnostic)
    debug_log(str(diagnostic))
    return diagnostic
