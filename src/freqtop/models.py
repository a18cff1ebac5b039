"""Data models for freqtop."""

from dataclasses import dataclass, field


@dataclass(slots=True, frozen=True)
class CoreFrequencySample:
    """Current clock speed of one logical CPU."""

    core_index: int
    megahertz: float | None  # None when the frequency could not be read

    @property
    def available(self) -> bool:
        """Whether a usable frequency was read for this core."""
        return self.megahertz is not None and self.megahertz > 0


@dataclass(slots=True, frozen=True)
class ProcessEntry:
    """A running process as shown in the process section."""

    pid: int
    name: str


@dataclass(slots=True)
class MonitorSample:
    """Everything collected during one sampling cycle."""

    frequencies: list[CoreFrequencySample] = field(default_factory=list)
    processes: list[ProcessEntry] = field(default_factory=list)
