"""Watch a launched game until BepInEx writes its log, the game closes, or time runs out."""
import os
from enum import Enum
from pathlib import Path
from typing import Callable

from PySide6.QtCore import QCoreApplication, QEventLoop, QFileSystemWatcher, QObject, QTimer, Signal

from core import UnityGame
from errors import VerificationModNotDetectedError, VerificationTimedOutError
from utils import ProcessInfo, kill_process


DEFAULT_WAIT_TIMEOUT = 30.0
DEFAULT_POLL_INTERVAL = 0.2


class VerificationOutcome(Enum):
    TIMED_OUT = "timed_out"
    GAME_CLOSED_NO_MOD_DETECTED = "game_closed_no_mod_detected"
    MOD_DETECTED = "mod_detected"


def raise_for_outcome(outcome: VerificationOutcome) -> None:
    """Raise the matching error for any outcome other than MOD_DETECTED."""
    if outcome is VerificationOutcome.TIMED_OUT:
        raise VerificationTimedOutError()
    if outcome is VerificationOutcome.GAME_CLOSED_NO_MOD_DETECTED:
        raise VerificationModNotDetectedError()


def _stat_key(path: Path) -> tuple[int, int] | None:
    try:
        stat = os.stat(path)
    except OSError:
        return None
    return stat.st_mtime_ns, stat.st_size


class VerificationLoop(QObject):
    """
    Decide whether BepInEx loaded into a game, from three waiters on one Qt event loop:

    - a QFileSystemWatcher on `BepInEx/` and its `LogOutput.log`: the log being
      created or changed means the mod loaded;
    - a QTimer polling the process table: the game appearing restarts the
      deadline, the game disappearing ends the run;
    - a single-shot QTimer deadline.

    Exactly one outcome is produced, and watcher and timers are torn down once.
    """
    finished = Signal(object)  # VerificationOutcome

    def __init__(
        self,
        log_path: Path,
        find_processes: Callable[[], list[ProcessInfo]],
        kill: Callable[[int], bool] = kill_process,
        wait_timeout: float = DEFAULT_WAIT_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        logger: Callable[[str], None] | None = None,
        parent: QObject | None = None,
    ) -> None:
        super().__init__(parent)
        self.log_path = Path(log_path)
        self.find_processes = find_processes
        self.kill = kill
        self.wait_timeout = wait_timeout
        self.poll_interval = poll_interval
        self.logger: Callable[[str], None] = logger if logger else lambda msg: None

        self.outcome: VerificationOutcome | None = None
        self.game_running = False
        self.game_seen = False
        self._initial_log = _stat_key(self.log_path)

        self.file_watcher = QFileSystemWatcher()
        self.file_watcher.directoryChanged.connect(self._on_path_changed)
        self.file_watcher.fileChanged.connect(self._on_path_changed)

        self.poll_timer = QTimer()
        self.poll_timer.timeout.connect(self._on_poll)

        self.deadline_timer = QTimer()
        self.deadline_timer.setSingleShot(True)
        self.deadline_timer.timeout.connect(self._on_deadline)

    @classmethod
    def for_game(cls, game: UnityGame, **kwargs) -> "VerificationLoop":
        return cls(game.log_path, game.get_processes, **kwargs)

    def log(self, message: str) -> None:
        self.logger(message)

    # --- Lifecycle ---

    def start(self) -> None:
        self._watch_paths()
        self.poll_timer.start(int(self.poll_interval * 1000))
        self.deadline_timer.start(int(self.wait_timeout * 1000))

    def run(self, launch: Callable[[], object] | None = None) -> VerificationOutcome:
        """
        Start watching, call `launch` (e.g. to open the game), and block on a
        Qt event loop until an outcome is reached.
        """
        if QCoreApplication.instance() is None:
            self._app = QCoreApplication([])

        loop = QEventLoop()
        self.finished.connect(loop.quit)
        self.start()
        if launch is not None:
            launch()
        if self.outcome is None:
            loop.exec()
        return self.outcome

    def _finish(self, outcome: VerificationOutcome) -> None:
        if self.outcome is not None:
            return
        self.outcome = outcome

        self.poll_timer.stop()
        self.deadline_timer.stop()
        watched = self.file_watcher.files() + self.file_watcher.directories()
        if watched:
            self.file_watcher.removePaths(watched)

        self.finished.emit(outcome)

    # --- Log watcher ---

    def _watch_paths(self) -> None:
        bepinex_dir = self.log_path.parent
        for path in (bepinex_dir.parent, bepinex_dir, self.log_path):
            if path.exists() and str(path) not in self.file_watcher.files() + self.file_watcher.directories():
                self.file_watcher.addPath(str(path))

    def _on_path_changed(self, path: str) -> None:
        if self.outcome is not None:
            return
        self._watch_paths()
        self._check_log()

    def _check_log(self) -> None:
        current = _stat_key(self.log_path)
        if current is not None and current != self._initial_log:
            self._on_log_event()

    def _on_log_event(self) -> None:
        if self.outcome is not None:
            return
        self.log("BepInEx log detected.")
        for process in self.find_processes():
            self.kill(process.pid)
        self._finish(VerificationOutcome.MOD_DETECTED)

    # --- Process poller ---

    def _on_poll(self) -> None:
        if self.outcome is not None:
            return
        # A file created inside a freshly watched folder can slip past the watcher
        self._check_log()
        if self.outcome is not None:
            return

        running = len(self.find_processes()) > 0
        if running and not self.game_running:
            self.game_running = True
            self.game_seen = True
            self.log("Game running...")
            self.deadline_timer.start(int(self.wait_timeout * 1000))
        elif not running and self.game_running:
            self.game_running = False
            self.log("Game closed.")
            self._finish(VerificationOutcome.GAME_CLOSED_NO_MOD_DETECTED)

    # --- Deadline ---

    def _on_deadline(self) -> None:
        if self.game_seen:
            self._finish(VerificationOutcome.GAME_CLOSED_NO_MOD_DETECTED)
        else:
            self._finish(VerificationOutcome.TIMED_OUT)
