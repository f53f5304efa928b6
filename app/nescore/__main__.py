import argparse
import signal
import sys
import threading
from typing import List, Optional

from rich import box
from rich.table import Table
from returns.result import Failure

from nescore.__version__ import __version_string__
from nescore.cartridge import CartridgeImage
from nescore.emulator import Emulator
from nescore.exceptions import IllegalOpcode, NesCoreError
from nescore.logger import console, default_log_file, log, setup_logging
from nescore.util.config import load_config


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nescore",
        description="Load an iNES / NES 2.0 cartridge image and run its CPU program.",
    )
    parser.add_argument("rom", help="Path to the .nes image")
    parser.add_argument("-i", "--info", action="store_true", help="Print the header description and exit")
    parser.add_argument("-f", "--force", action="store_true", default=None, help="Skip the system type check")
    parser.add_argument("--override-tv-format", choices=("NTSC", "PAL"), help="Force a timing mode (not implemented)")
    parser.add_argument("--debug", action="store_true", default=None, help="Log at DEBUG level")
    parser.add_argument("--trace", action="store_true", default=None, help="Log every executed instruction")
    parser.add_argument("--max-steps", type=int, default=None, help="Stop after N instructions (0 = unlimited)")
    parser.add_argument("--config", default=None, help="Path to config.toml")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version_string__}")
    return parser


def print_info(image: CartridgeImage) -> None:
    table = Table(title=str(image.path or "ROM"), box=box.SIMPLE_HEAVY, show_header=False)
    table.add_column("Field", style="bold cyan")
    table.add_column("Value")
    for label, value in image.descriptor.describe():
        table.add_row(label, value)
    console.print(table)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config = load_config(args.config)

    # Flags given on the command line win over config.toml.
    debug = config["general"]["debug"] if args.debug is None else args.debug
    force = config["cartridge"]["force"] if args.force is None else args.force
    trace = config["cpu"]["trace"] if args.trace is None else args.trace
    max_steps = config["cpu"]["max_steps"] if args.max_steps is None else args.max_steps

    setup_logging(debug=debug, log_file=default_log_file() if config["general"]["log_to_file"] else None)
    log.debug(f"NESCore {__version_string__}")

    if max_steps < 0:
        log.error("--max-steps must be >= 0")
        return 1

    result = CartridgeImage.from_file(args.rom)
    if isinstance(result, Failure):
        log.error(f"Failed to load {args.rom}: {result.failure()}")
        return 1
    image = result.unwrap()
    log.info(repr(image))

    if args.info:
        print_info(image)
        return 0

    if args.override_tv_format:
        log.warning(f"--override-tv-format {args.override_tv_format} is not implemented, ignoring")

    stop_event = threading.Event()

    def handle_sigint(signum, frame) -> None:
        log.info("Interrupt received, stopping after the current instruction")
        stop_event.set()

    previous_handler = signal.signal(signal.SIGINT, handle_sigint)
    emulator: Optional[Emulator] = None
    try:
        emulator = Emulator(
            image,
            force=force,
            trace=trace,
            save_extension=config["cartridge"]["save_extension"],
        )
        emulator.run(stop_event, max_steps=max_steps)
    except IllegalOpcode as e:
        if emulator is not None and emulator.cpu.tracelog:
            log.error("Last instructions:\n" + "\n".join(emulator.cpu.tracelog))
        log.error(f"CPU halted: {e}")
        return 1
    except NesCoreError as e:
        log.error(str(e))
        return 1
    finally:
        if emulator is not None:
            emulator.destroy()
        signal.signal(signal.SIGINT, previous_handler)

    return 0


if __name__ == "__main__":
    sys.exit(main())
