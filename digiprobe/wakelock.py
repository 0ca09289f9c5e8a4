"""Keeps the device awake while a drive test is recording."""
import logging
import shutil
import subprocess
from abc import ABC, abstractmethod
from typing import List, Optional

logger = logging.getLogger(__name__)

INHIBIT_COMMAND = "systemd-inhibit"


class WakeLock(ABC):
    """A hold that stops the device idling or sleeping.

    ``release`` must be safe to call more than once and when nothing is held.
    """

    @property
    @abstractmethod
    def held(self) -> bool:
        ...

    @abstractmethod
    def acquire(self) -> None:
        ...

    @abstractmethod
    def release(self) -> None:
        ...


class NullWakeLock(WakeLock):
    def __init__(self) -> None:
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    def acquire(self) -> None:
        self._held = True

    def release(self) -> None:
        self._held = False


class InhibitWakeLock(WakeLock):
    """Holds a ``systemd-inhibit`` child process for as long as the lock is held."""

    def __init__(self, why: str = "DigiProbe drive test") -> None:
        self.why = why
        self._proc: Optional[subprocess.Popen] = None

    @property
    def held(self) -> bool:
        return self._proc is not None and self._proc.poll() is None

    def _command(self) -> List[str]:
        return [
            INHIBIT_COMMAND,
            "--what=idle:sleep",
            "--who=digiprobe",
            f"--why={self.why}",
            "--mode=block",
            "sleep",
            "infinity",
        ]

    def acquire(self) -> None:
        if self.held:
            return
        if shutil.which(INHIBIT_COMMAND) is None:
            raise RuntimeError(f"{INHIBIT_COMMAND} is not available")
        self._proc = subprocess.Popen(
            self._command(),
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )
        logger.debug("Wake lock acquired (pid=%d)", self._proc.pid)

    def release(self) -> None:
        proc, self._proc = self._proc, None
        if proc is None:
            return
        if proc.poll() is None:
            proc.terminate()
            try:
                proc.wait(timeout=2)
            except subprocess.TimeoutExpired:
                proc.kill()
                proc.wait()
        logger.debug("Wake lock released")
