"""freqtop - Full-screen Textual view."""

from collections.abc import Sequence

from rich.text import Text
from textual import work
from textual.app import App, ComposeResult
from textual.containers import Container
from textual.widgets import DataTable, Footer, Static
from textual.worker import Worker, get_current_worker

from freqtop.models import CoreFrequencySample, MonitorSample, ProcessEntry
from freqtop.monitor import DEFAULT_INTERVAL, MIN_INTERVAL, collect_sample, frequency_lines
from freqtop.platforms import Platform, default_platform

LOADING_FREQUENCIES = "Loading frequency info..."


class FrequencyPanel(Static):
    """Panel listing the current frequency of every logical CPU."""

    DEFAULT_CSS = """
    FrequencyPanel {
        height: auto;
        min-height: 3;
        padding: 1;
        background: $surface;
    }
    """

    def __init__(self, **kwargs) -> None:
        """Initialize FrequencyPanel."""
        super().__init__(LOADING_FREQUENCIES, **kwargs)
        self._frequencies: list[CoreFrequencySample] | None = None

    @property
    def frequencies(self) -> list[CoreFrequencySample] | None:
        """Samples currently shown, or None before the first update."""
        return self._frequencies

    def update_frequencies(self, frequencies: Sequence[CoreFrequencySample]) -> None:
        """Show a new set of frequency samples."""
        self._frequencies = list(frequencies)
        self.update(self._get_frequency_info())

    def _get_frequency_info(self) -> str:
        """Get the frequency panel text."""
        if self._frequencies is None:
            return LOADING_FREQUENCIES
        return "\n".join(frequency_lines(self._frequencies))


class ProcessTable(Container):
    """Container for the process data table."""

    DEFAULT_CSS = """
    ProcessTable {
        height: 1fr;
        border: solid $primary;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize ProcessTable."""
        super().__init__(*args, **kwargs)
        self._current_pids: set[int] = set()

    def compose(self) -> ComposeResult:
        """Compose the process table."""
        yield DataTable(id="process-table")

    def on_mount(self) -> None:
        """Initialize the data table when mounted."""
        table = self.query_one("#process-table", DataTable)
        table.cursor_type = "row"
        table.add_column("PID", key="pid", width=8)
        table.add_column("Name", key="name")

    def update_processes(self, processes: Sequence[ProcessEntry]) -> None:
        """
        Update the process table with new data.

        Existing rows are updated with update_cell rather than re-rendering
        the whole table; rows stay ordered by pid.
        """
        table = self.query_one("#process-table", DataTable)
        new_pids = {proc.pid for proc in processes}

        for pid in self._current_pids - new_pids:
            table.remove_row(str(pid))

        for proc in processes:
            row_key = str(proc.pid)
            # Names are shown verbatim, never parsed as markup
            if proc.pid in self._current_pids:
                table.update_cell(row_key, "name", Text(proc.name))
            else:
                table.add_row(proc.pid, Text(proc.name), key=row_key)

        self._current_pids = new_pids
        table.sort("pid")


class FreqtopApp(App):
    """Main freqtop application."""

    TITLE = "freqtop"
    SUB_TITLE = "CPU frequency and process monitor"

    CSS = """
    Screen {
        layout: vertical;
    }

    #frequency-panel {
        dock: top;
        height: auto;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
    ]

    def __init__(self, platform: Platform | None = None, interval: float = DEFAULT_INTERVAL) -> None:
        """
        Initialize the FreqtopApp.

        Args:
            platform: Data source. Defaults to the one for the running OS.
            interval: Refresh period (in seconds). Default 1.0s.
        """
        super().__init__()
        self._platform = platform if platform is not None else default_platform()
        self._interval = max(MIN_INTERVAL, interval)
        self._sampler: Worker[None] | None = None

    def compose(self) -> ComposeResult:
        """Compose the application layout."""
        yield FrequencyPanel(id="frequency-panel")
        yield ProcessTable()
        yield Footer()

    def on_mount(self) -> None:
        """Take the first sample and schedule the periodic refresh."""
        self.call_after_refresh(self._request_sample)
        self.set_interval(self._interval, self._request_sample)

    def _request_sample(self) -> None:
        """Start a background collection unless the previous one is still running."""
        if self._sampler is None or self._sampler.is_finished:
            self._sampler = self._collect_sample()

    @work(thread=True, group="sampler")
    def _collect_sample(self) -> None:
        """Collect a sample off the event loop and hand it to the UI."""
        sample = collect_sample(self._platform)
        if not get_current_worker().is_cancelled:
            self.call_from_thread(self._update_ui, sample)

    def _update_ui(self, sample: MonitorSample) -> None:
        """Update the UI with a new sample."""
        self.query_one("#frequency-panel", FrequencyPanel).update_frequencies(sample.frequencies)
        self.query_one(ProcessTable).update_processes(sample.processes)


def main() -> None:
    """Entry point for the freqtop-tui console script."""
    app = FreqtopApp()
    app.run()


if __name__ == "__main__":
    main()
