import threading
from collections import deque
from pathlib import Path
from types import TracebackType
from typing import Any, Callable, Dict, Optional, Type, Union

from nescore.bus import Bus
from nescore.cartridge import CartridgeImage, SystemType
from nescore.cpu import CPU
from nescore.exceptions import UnsupportedSystem
from nescore.logger import log as _logger
from nescore.mapper import DEFAULT_SAVE_EXTENSION, Mapper, create_mapper


class Emulator:
    """
    Cartridge, mapper, bus and CPU wired together.

    Construction builds the mapper (opening the battery file if the
    cartridge has one), the bus and the CPU, then resets the CPU through the
    reset vector. Use it as a context manager, or call :meth:`destroy`, so
    the battery file is flushed on every exit path.
    """

    def __init__(
        self,
        image: CartridgeImage,
        rom_path: Optional[Union[str, Path]] = None,
        *,
        force: bool = False,
        trace: bool = False,
        save_extension: str = DEFAULT_SAVE_EXTENSION,
    ) -> None:
        descriptor = image.descriptor
        if descriptor.system is not SystemType.NES:
            if not force:
                raise UnsupportedSystem(descriptor.system_name)
            _logger.warning("Force flag specified, not running compatibility checks. Here be dragons!")

        self.image: CartridgeImage = image
        self._events: Dict[str, deque[Callable[..., Any]]] = {}
        self.mapper: Mapper = create_mapper(image, rom_path, save_extension=save_extension)
        try:
            self.bus: Bus = Bus(self.mapper)
            self.cpu: CPU = CPU(self.bus, trace=trace)
            self.cpu.Reset()
        except BaseException:
            self.mapper.destroy()
            raise
        self.steps: int = 0

    def on(self, event_name: str):
        """Register a callback, e.g. ``@emu.on("after_step")``."""

        def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
            self._events.setdefault(event_name, deque()).append(func)
            return func

        return decorator

    def _emit(self, event_name: str, *args: Any, **kwargs: Any) -> None:
        for callback in self._events.get(event_name, ()):
            callback(*args, **kwargs)

    def step(self) -> int:
        """Run exactly one instruction."""
        self._emit("before_step", self.cpu.Architecture)
        cycles = self.cpu.step()
        self.steps += 1
        self._emit("after_step", self.cpu.Architecture)
        return cycles

    def run(self, stop_event: Optional[threading.Event] = None, max_steps: int = 0) -> int:
        """
        Run instructions until ``stop_event`` is set or ``max_steps`` is reached.

        The stop event is checked between instructions only, so an instruction
        that has started always completes.

        Args:
            stop_event: Cancellation token, usually set from a signal handler.
            max_steps: Stop after this many instructions (0 = no limit).

        Returns:
            The number of instructions executed by this call.
        """
        if stop_event is None:
            stop_event = threading.Event()

        executed = 0
        while not stop_event.is_set():
            if max_steps and executed >= max_steps:
                break
            self.step()
            executed += 1

        _logger.info(f"Stopped after {executed} instructions ({self.cpu.Architecture.TotalCycles} cycles total)")
        return executed

    def destroy(self) -> None:
        """Release mapper resources. The cartridge image stays valid."""
        self.mapper.destroy()

    def __enter__(self) -> "Emulator":
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        self.destroy()
