"""
tabpilot - Download Tracker

Append-only log of downloads started by page actions during one session.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from playwright.async_api import Download

    from tabpilot.config import FullConfig

logger = logging.getLogger("tabpilot.downloads")


@dataclass
class DownloadEntry:
    download: "Download"
    output_file: Path
    finished: bool = False

    @property
    def filename(self) -> str:
        return self.download.suggested_filename


class DownloadTracker:
    def __init__(self, config: "FullConfig"):
        self._config = config
        self._entries: list[DownloadEntry] = []

    @property
    def entries(self) -> list[DownloadEntry]:
        return list(self._entries)

    async def start(self, download: "Download") -> DownloadEntry:
        """Record a download and save it. ``finished`` flips only once the file is written."""
        entry = DownloadEntry(
            download=download,
            output_file=self._config.output_file(download.suggested_filename),
        )
        self._entries.append(entry)
        logger.info(f"Downloading {entry.filename} to {entry.output_file}")
        await download.save_as(entry.output_file)
        entry.finished = True
        return entry

    def reset(self) -> None:
        self._entries = []

    def markdown(self) -> list[str]:
        if not self._entries:
            return []
        lines = ["", "### Downloads"]
        for entry in self._entries:
            if entry.finished:
                lines.append(f"- Downloaded file {entry.filename} to {entry.output_file}")
            else:
                lines.append(f"- Downloading file {entry.filename} ...")
        lines.append("")
        return lines

    def __len__(self) -> int:
        return len(self._entries)
