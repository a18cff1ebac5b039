"""Sampling loop and in-place text renderer for freqtop."""

import io
import logging
import sys
import threading
from collections.abc import Sequence
from typing import TextIO

from freqtop.models import CoreFrequencySample, MonitorSample, ProcessEntry
from freqtop.platforms import Platform, default_platform

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 1.0
MIN_INTERVAL = 0.1

FREQUENCY_HEADER = "=== Current frequency per core ==="
NO_FREQUENCY_DATA = "Could not read per-core frequency on this system."
PROCESS_HEADER = "=== Running processes (PID, Name) ==="
UNAVAILABLE = "N/D"


def format_mhz(megahertz: float) -> str:
    """Format a positive frequency in MHz as a human-readable string."""
    if megahertz >= 1000:
        return f"{megahertz / 1000:.2f} GHz"
    return f"{megahertz:.0f} MHz"


def format_sample(sample: CoreFrequencySample) -> str:
    """Formatted frequency of a core, or N/D when it is unavailable."""
    if not sample.available:
        return UNAVAILABLE
    return format_mhz(sample.megahertz)


def frequency_lines(samples: Sequence[CoreFrequencySample]) -> list[str]:
    """Body lines of the frequency section, without header."""
    if not samples:
        return [NO_FREQUENCY_DATA]
    return [f"CPU {sample.core_index}: {format_sample(sample)}" for sample in samples]


def _write_lines(out: TextIO, lines: list[str]) -> int:
    """Write each line followed by a newline and return how many were written."""
    out.write("".join(f"{line}\n" for line in lines))
    return len(lines)


def write_frequency_section(out: TextIO, samples: Sequence[CoreFrequencySample]) -> int:
    """
    Write the frequency section and return the number of lines written.

    The section is a header, one line per core (or the no-data sentence) and
    a trailing blank line.
    """
    return _write_lines(out, [FREQUENCY_HEADER, *frequency_lines(samples), ""])


def write_process_section(out: TextIO, processes: Sequence[ProcessEntry]) -> int:
    """Write the process section and return the number of lines written."""
    lines = [PROCESS_HEADER]
    lines.extend(f"{proc.pid}  {proc.name}" for proc in processes)
    return _write_lines(out, lines)


def redraw_sequence(lines: int) -> str:
    """Move the cursor up ``lines`` rows, erase that row and return to column 0."""
    return f"\x1b[{lines}A\x1b[2K\r"


def collect_sample(platform: Platform) -> MonitorSample:
    """Take one frequency and process sample from the platform."""
    return MonitorSample(
        frequencies=platform.read_core_frequencies(),
        processes=platform.list_processes(),
    )


class FrequencyMonitor:
    """
    Samples per-core frequencies and the process table and redraws them in place.

    Runs on the calling thread. Each cycle writes the report to the output
    stream, then moves the cursor back over exactly the lines it wrote so
    the next cycle overwrites them. The loop ends once ``stop()`` is called;
    the stop request is honoured at the next cycle boundary.
    """

    def __init__(
        self,
        platform: Platform | None = None,
        stream: TextIO | None = None,
        interval: float = DEFAULT_INTERVAL,
    ) -> None:
        """
        Initialize the FrequencyMonitor.

        Args:
            platform: Data source. Defaults to the one for the running OS.
            stream: Output sink. Defaults to standard output.
            interval: Pause between cycles (in seconds). Default 1.0s.
        """
        self._platform = platform if platform is not None else default_platform()
        self._stream = stream if stream is not None else sys.stdout
        self._interval = max(MIN_INTERVAL, interval)
        self._stop_event = threading.Event()
        self._lines_emitted_last_cycle = 0

    @property
    def interval(self) -> float:
        """Get the pause between cycles."""
        return self._interval

    @interval.setter
    def interval(self, value: float) -> None:
        """Set the pause between cycles."""
        self._interval = max(MIN_INTERVAL, value)

    @property
    def lines_emitted_last_cycle(self) -> int:
        """Number of lines the previous cycle wrote."""
        return self._lines_emitted_last_cycle

    @property
    def is_stopped(self) -> bool:
        """Check if a stop has been requested."""
        return self._stop_event.is_set()

    def collect(self) -> MonitorSample:
        """Collect one sample from the platform."""
        return collect_sample(self._platform)

    def render(self, sample: MonitorSample) -> tuple[str, int]:
        """Render a sample into its report text and line count."""
        buffer = io.StringIO()
        lines = write_frequency_section(buffer, sample.frequencies)
        lines += write_process_section(buffer, sample.processes)
        return buffer.getvalue(), lines

    def run_cycle(self) -> int:
        """Sample, write the report and reposition the cursor. Returns lines written."""
        text, lines = self.render(self.collect())
        self._stream.write(text)
        self._stream.write(redraw_sequence(lines))
        self._stream.flush()
        self._lines_emitted_last_cycle = lines
        return lines

    def run(self) -> None:
        """Run cycles until ``stop()`` is called."""
        logger.debug("Sampling every %.1fs", self._interval)
        while not self._stop_event.is_set():
            self.run_cycle()
            # Wait for the interval or until stop is requested
            self._stop_event.wait(timeout=self._interval)

    def stop(self) -> None:
        """Request the loop to end at the next cycle boundary."""
        self._stop_event.set()

    def release_cursor(self) -> None:
        """Move the cursor below the last report so the shell prompt does not overwrite it."""
        self._stream.write("\n" * self._lines_emitted_last_cycle)
        self._stream.flush()


def main() -> None:
    """Entry point for the freqtop console script."""
    monitor = FrequencyMonitor()
    try:
        monitor.run()
    except KeyboardInterrupt:
        monitor.stop()
        monitor.release_cursor()


if __name__ == "__main__":
    main()
