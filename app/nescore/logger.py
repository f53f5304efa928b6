import logging
from datetime import datetime
from pathlib import Path
from typing import Final, List, Optional, Tuple, Union

from rich.console import Console
from rich.logging import RichHandler

console: Final[Console] = Console()

log_root: Final[Path] = Path("log").resolve()
time_format: Final[str] = "%Y-%m-%d %H:%M:%S"


class NesFileHandler(logging.Handler):
    """Append-only log file handler that retries entries it failed to write."""

    def __init__(self, file_name: Union[str, Path]):
        super().__init__()
        self._file_name = Path(file_name)
        self._log_hold: List[Tuple[logging.LogRecord, Exception]] = []

    def _write_log_entry(self, log_entry: str) -> None:
        with open(self._file_name, "a", encoding="utf-8") as f:
            f.write(log_entry + "\n")

    def emit(self, record: logging.LogRecord) -> None:
        log_entry = self.format(record)

        self.acquire()
        try:
            if self._log_hold:
                still_failed = []
                for old_record, _ in self._log_hold:
                    try:
                        self._write_log_entry(self.format(old_record))
                    except OSError as e:
                        still_failed.append((old_record, e))
                self._log_hold = still_failed

            try:
                self._write_log_entry(log_entry)
            except OSError as e:
                self._log_hold.append((record, e))
        finally:
            self.release()


def get_time() -> str:
    return datetime.now().strftime("%Y-%m-%d_%H-%M-%S")


def setup_logging(debug: bool = False, log_file: Optional[Union[str, Path]] = None) -> logging.Logger:
    """
    Install the console (rich) handler and, optionally, a file handler.

    Args:
        debug: Log at DEBUG instead of INFO and show locals in tracebacks.
        log_file: Path of the log file, usually :func:`default_log_file`.
            No file handler is installed when omitted.

    Returns:
        The package logger.
    """
    handlers: List[logging.Handler] = [
        RichHandler(
            rich_tracebacks=True,
            show_path=debug,
            enable_link_path=True,
            tracebacks_show_locals=debug,
            show_level=True,
            console=console,
        )
    ]
    if log_file is not None:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = NesFileHandler(log_file)
        file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s", time_format))
        handlers.append(file_handler)

    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(message)s",
        datefmt=time_format,
        handlers=handlers,
        force=True,
    )
    return log


def default_log_file() -> Path:
    return log_root / f"nescore_{get_time()}.log"


log: Final[logging.Logger] = logging.getLogger("NESCore")
