"""
SPDX-License-Identifier: GPL-3.0-only
Copyright © 2025 Keystone Intelligence LLC
Licensed under GPL v3 (see LICENSE file for details)
"""

import re
from abc import ABC, abstractmethod
from typing import Optional, Tuple
import httpx
import psutil
from PySide6.QtCore import QUrl
from PySide6.QtGui import QDesktopServices
from PySide6.QtWidgets import QApplication, QFileDialog

from config import APP_VERSION, DMI_FILE_EXTENSION
from errors import ExternalError

UPDATE_CHECK_TIMEOUT = 5


# ---------------------------
# Collaborator Abstractions
# ---------------------------
class FilePicker(ABC):
    @abstractmethod
    def save_file(self, title: str, filename: str, location: str) -> Optional[str]:
        """Returns the chosen path, or None if the dialog was cancelled."""
        pass


class ProcessQuery(ABC):
    @abstractmethod
    def count(self, name: str) -> int:
        pass


class UpdateChecker(ABC):
    @abstractmethod
    def latest_version(self) -> Optional[str]:
        pass

    def update_available(self, current: str = APP_VERSION) -> bool:
        """
        True if a newer release exists. A failed check counts as "no update":
        being told late about a release is harmless.
        """
        try:
            latest = self.latest_version()
        except Exception as e:
            print(f"Warning: Update check failed: {e}")
            return False
        if not latest:
            return False
        return parse_version(current) < parse_version(latest)


class BrowserOpener(ABC):
    @abstractmethod
    def open(self, url: str):
        pass


def parse_version(version: str) -> Tuple[int, ...]:
    """'v1.2.10' -> (1, 2, 10). Non-numeric suffixes are ignored."""
    return tuple(int(part) for part in re.findall(r"\d+", version.split("-")[0])[:3])


# ---------------------------
# Default Implementations
# ---------------------------
class QtFilePicker(FilePicker):
    def __init__(self, parent=None):
        self.parent = parent

    def save_file(self, title: str, filename: str, location: str) -> Optional[str]:
        if QApplication.instance() is None:
            raise ExternalError("No Qt application is running; cannot show a file dialog")
        start = f"{location}/{filename}" if location else filename
        path, _ = QFileDialog.getSaveFileName(self.parent, title, start, f"dmi files (*{DMI_FILE_EXTENSION})")
        return path or None


class PsutilProcessQuery(ProcessQuery):
    def count(self, name: str) -> int:
        total = 0
        for process in psutil.process_iter(["name"]):
            process_name = (process.info.get("name") or "").lower()
            if process_name == name.lower() or process_name.startswith(name.lower() + "."):
                total += 1
        return total


class GitHubUpdateChecker(UpdateChecker):
    """
    Reads the newest release tag from the repository's /releases/latest
    redirect.
    """
    def __init__(self, repository_url: str, timeout: float = UPDATE_CHECK_TIMEOUT):
        self.repository_url = repository_url.rstrip("/")
        self.timeout = timeout

    def latest_version(self) -> Optional[str]:
        if not self.repository_url:
            return None
        response = httpx.head(f"{self.repository_url}/releases/latest", follow_redirects=True, timeout=self.timeout)
        response.raise_for_status()
        match = re.search(r"/releases/tag/([^/?#]+)", str(response.url))
        return match.group(1) if match else None


class QtBrowserOpener(BrowserOpener):
    def open(self, url: str):
        if not QDesktopServices.openUrl(QUrl(url)):
            raise ExternalError(f"Failed to open browser for {url}")
