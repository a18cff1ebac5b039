"""Platform readers for per-core CPU frequencies and the process table.

Every platform exposes the same two operations, ``read_core_frequencies`` and
``list_processes``. Neither raises: unreadable data degrades to unavailable
samples, skipped processes, or an empty list.
"""

import logging
import re
import sys
from collections.abc import Callable, Iterable, Mapping
from pathlib import Path
from typing import Protocol

import psutil

from freqtop.models import CoreFrequencySample, ProcessEntry

logger = logging.getLogger(__name__)

SYSFS_CPU_ROOT = "/sys/devices/system/cpu"
CPUINFO_PATH = "/proc/cpuinfo"
PROC_ROOT = "/proc"

# POWER_INFORMATION_LEVEL.ProcessorInformation
PROCESSOR_INFORMATION = 11

_CPU_DIR_RE = re.compile(r"^cpu([0-9]+)$")


class PowerInformationError(OSError):
    """CallNtPowerInformation returned a failure status."""


class Platform(Protocol):
    """Source of CPU frequency and process data for one operating system."""

    def read_core_frequencies(self) -> list[CoreFrequencySample]:
        """Return one sample per logical CPU, ordered by core index."""
        ...

    def list_processes(self) -> list[ProcessEntry]:
        """Return running processes, unique by pid and sorted by pid."""
        ...


def densify(frequencies: Mapping[int, float | None]) -> list[CoreFrequencySample]:
    """
    Expand a sparse core index -> MHz mapping into a dense sample list.

    The result holds one sample for every index from 0 up to the highest index
    in the mapping. Indices missing from the mapping and non-positive values
    become unavailable samples so that list position always matches the
    core index.
    """
    if not frequencies:
        return []

    samples = []
    for index in range(max(frequencies) + 1):
        mhz = frequencies.get(index)
        if mhz is not None and mhz <= 0:
            mhz = None
        samples.append(CoreFrequencySample(core_index=index, megahertz=mhz))
    return samples


def normalize_processes(entries: Iterable[ProcessEntry]) -> list[ProcessEntry]:
    """Drop nameless and duplicate entries (first seen wins), sorted by pid."""
    unique: dict[int, ProcessEntry] = {}
    for entry in entries:
        if entry.name and entry.pid not in unique:
            unique[entry.pid] = entry
    return sorted(unique.values(), key=lambda entry: entry.pid)


def parse_cpuinfo(text: str) -> dict[int, float]:
    """
    Parse ``/proc/cpuinfo`` text into a core index -> MHz mapping.

    A ``processor`` line starts the block of a logical CPU; the ``cpu MHz``
    line inside that block carries its nominal current frequency. Lines that
    fail to parse are skipped.
    """
    frequencies: dict[int, float] = {}
    current_cpu = -1

    for line in text.splitlines():
        _, sep, value = line.partition(":")
        if not sep:
            continue
        if line.startswith("processor"):
            try:
                current_cpu = int(value)
            except ValueError:
                current_cpu = -1
        elif line.startswith("cpu MHz") and current_cpu >= 0:
            try:
                frequencies[current_cpu] = float(value)
            except ValueError:
                continue

    return frequencies


class LinuxPlatform:
    """
    Reads Linux pseudo-filesystems directly.

    Frequencies come from sysfs cpufreq (``scaling_cur_freq``, in kHz), with
    ``/proc/cpuinfo`` as the fallback when sysfs yields no usable value. The
    process table comes from the numeric entries under ``/proc``.
    """

    def __init__(
        self,
        sysfs_root: str | Path = SYSFS_CPU_ROOT,
        cpuinfo_path: str | Path = CPUINFO_PATH,
        proc_root: str | Path = PROC_ROOT,
    ) -> None:
        """
        Initialize the LinuxPlatform.

        Args:
            sysfs_root: Directory holding the ``cpuN`` entries.
            cpuinfo_path: Path of the cpuinfo table used as fallback.
            proc_root: Root of the process pseudo-filesystem.
        """
        self._sysfs_root = Path(sysfs_root)
        self._cpuinfo_path = Path(cpuinfo_path)
        self._proc_root = Path(proc_root)

    def read_core_frequencies(self) -> list[CoreFrequencySample]:
        """Read per-core frequencies, falling back to cpuinfo if sysfs fails."""
        samples = self._read_scaling_frequencies()
        if any(sample.available for sample in samples):
            return samples

        logger.debug(
            "No usable cpufreq values under %s, falling back to %s",
            self._sysfs_root,
            self._cpuinfo_path,
        )
        return self._read_cpuinfo_frequencies()

    def _cpu_indices(self) -> list[int]:
        """Indices of the ``cpuN`` directories under the sysfs root."""
        try:
            names = [entry.name for entry in self._sysfs_root.iterdir()]
        except OSError as exc:
            logger.debug("Cannot enumerate %s: %s", self._sysfs_root, exc)
            return []

        indices = []
        for name in names:
            match = _CPU_DIR_RE.match(name)
            if match:
                indices.append(int(match.group(1)))
        return sorted(indices)

    def _read_scaling_frequencies(self) -> list[CoreFrequencySample]:
        """Per-core frequencies from sysfs ``scaling_cur_freq``, converted to MHz."""
        frequencies: dict[int, float | None] = {}
        for index in self._cpu_indices():
            path = self._sysfs_root / f"cpu{index}" / "cpufreq" / "scaling_cur_freq"
            try:
                khz = int(path.read_text().strip())
            except (OSError, ValueError) as exc:
                logger.debug("Cannot read %s: %s", path, exc)
                frequencies[index] = None
                continue
            frequencies[index] = khz / 1000.0 if khz > 0 else None
        return densify(frequencies)

    def _read_cpuinfo_frequencies(self) -> list[CoreFrequencySample]:
        """Per-core frequencies from the ``cpu MHz`` fields of the cpuinfo table."""
        try:
            text = self._cpuinfo_path.read_text(errors="replace")
        except OSError as exc:
            logger.debug("Cannot read %s: %s", self._cpuinfo_path, exc)
            return []
        return densify(parse_cpuinfo(text))

    def list_processes(self) -> list[ProcessEntry]:
        """List processes from the numeric entries of the proc root."""
        try:
            entries = list(self._proc_root.iterdir())
        except OSError as exc:
            logger.debug("Cannot enumerate %s: %s", self._proc_root, exc)
            return []

        processes = []
        for entry in entries:
            if not entry.name.isdigit():
                continue
            name = self._process_name(entry)
            if name:
                processes.append(ProcessEntry(pid=int(entry.name), name=name))

        return normalize_processes(processes)

    def _process_name(self, proc_dir: Path) -> str:
        """
        Short name of a process, from ``comm`` or else the ``Name:`` status field.

        Returns an empty string when neither can be read, e.g. because the
        process exited during enumeration.
        """
        try:
            name = (proc_dir / "comm").read_text(errors="replace").rstrip("\n")
        except OSError:
            name = ""
        if name:
            return name

        try:
            with open(proc_dir / "status", errors="replace") as status:
                for line in status:
                    if line.startswith("Name:"):
                        return line[len("Name:"):].lstrip(" \t").rstrip("\n")
        except OSError as exc:
            logger.debug("Cannot resolve name of pid %s: %s", proc_dir.name, exc)
        return ""


def query_processor_power_information(count: int) -> list[float]:
    """
    Query the current MHz of every logical CPU with CallNtPowerInformation.

    Args:
        count: Number of logical processors to size the output buffer for.

    Returns:
        The ``CurrentMhz`` field of each PROCESSOR_POWER_INFORMATION record,
        in logical processor order.

    Raises:
        PowerInformationError: If the call returns a non-zero NTSTATUS.
        OSError: If powrprof.dll cannot be loaded.
    """
    import ctypes
    from ctypes import wintypes

    class PROCESSOR_POWER_INFORMATION(ctypes.Structure):
        _fields_ = [
            ("Number", wintypes.ULONG),
            ("MaxMhz", wintypes.ULONG),
            ("CurrentMhz", wintypes.ULONG),
            ("MhzLimit", wintypes.ULONG),
            ("MaxIdleState", wintypes.ULONG),
            ("CurrentIdleState", wintypes.ULONG),
        ]

    powrprof = ctypes.WinDLL("powrprof.dll")
    call_nt_power_information = powrprof.CallNtPowerInformation
    call_nt_power_information.argtypes = [
        wintypes.DWORD,  # InformationLevel
        ctypes.c_void_p,  # InputBuffer
        wintypes.ULONG,  # InputBufferLength
        ctypes.c_void_p,  # OutputBuffer
        wintypes.ULONG,  # OutputBufferLength
    ]
    call_nt_power_information.restype = wintypes.LONG

    buffer = (PROCESSOR_POWER_INFORMATION * count)()
    status = call_nt_power_information(
        PROCESSOR_INFORMATION,
        None,
        0,
        ctypes.byref(buffer),
        ctypes.sizeof(buffer),
    )
    if status != 0:
        raise PowerInformationError(
            f"CallNtPowerInformation failed with status {status & 0xFFFFFFFF:#010x}"
        )
    return [float(record.CurrentMhz) for record in buffer]


def read_psutil_frequencies() -> list[CoreFrequencySample]:
    """
    Per-core frequencies as reported by ``psutil.cpu_freq(percpu=True)``.

    Empty unless psutil returns exactly one reading per logical CPU. On
    Windows and macOS it returns a single machine-wide reading instead, which
    must not be shown as the frequency of CPU 0.
    """
    try:
        readings = psutil.cpu_freq(percpu=True) or []
    except (AttributeError, NotImplementedError, OSError) as exc:
        logger.debug("psutil.cpu_freq unavailable: %s", exc)
        return []

    count = psutil.cpu_count(logical=True) or 0
    if len(readings) != count:
        logger.debug("psutil reported %d frequencies for %d CPUs, ignoring", len(readings), count)
        return []
    return densify({index: reading.current for index, reading in enumerate(readings)})


def snapshot_processes() -> list[ProcessEntry]:
    """
    List processes from a single psutil process snapshot.

    Handles NoSuchProcess, AccessDenied and ZombieProcess per process so that
    processes exiting mid-iteration are skipped rather than fatal.
    """
    processes: list[ProcessEntry] = []

    try:
        for proc in psutil.process_iter(attrs=["pid", "name"]):
            try:
                info = proc.info
                processes.append(ProcessEntry(pid=info["pid"], name=info.get("name") or ""))
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                continue
    except (OSError, psutil.Error) as exc:
        logger.debug("Process snapshot failed: %s", exc)
        return []

    return normalize_processes(processes)


class WindowsPlatform:
    """
    Reads frequencies through the power-information API and processes
    through a psutil snapshot.

    When the power query fails, per-core psutil frequencies are used only if
    psutil reports exactly one reading per logical CPU. A single aggregate
    reading is never shown as the frequency of CPU 0.
    """

    def __init__(self, power_query: Callable[[int], list[float]] | None = None) -> None:
        """
        Initialize the WindowsPlatform.

        Args:
            power_query: Callable returning the current MHz of ``count`` logical
                CPUs. Defaults to :func:`query_processor_power_information`.
        """
        self._power_query = power_query or query_processor_power_information

    def read_core_frequencies(self) -> list[CoreFrequencySample]:
        """Read per-core frequencies in one batch power-information query."""
        count = psutil.cpu_count(logical=True) or 0
        if count == 0:
            return []

        try:
            readings = self._power_query(count)
        except OSError as exc:
            logger.debug("Processor power query failed: %s", exc)
            return read_psutil_frequencies()

        return densify(dict(enumerate(readings)))

    def list_processes(self) -> list[ProcessEntry]:
        """List processes from a psutil snapshot."""
        return snapshot_processes()


class PsutilPlatform:
    """Portable platform backed entirely by psutil, for other operating systems."""

    def read_core_frequencies(self) -> list[CoreFrequencySample]:
        """Per-core frequencies from psutil, empty if it has none."""
        return read_psutil_frequencies()

    def list_processes(self) -> list[ProcessEntry]:
        """List processes from a psutil snapshot."""
        return snapshot_processes()


def default_platform(platform_name: str | None = None) -> Platform:
    """
    Select the platform implementation for the running operating system.

    Args:
        platform_name: Value to match instead of ``sys.platform``.
    """
    name = platform_name or sys.platform
    if name.startswith("linux"):
        return LinuxPlatform()
    if name == "win32":
        return WindowsPlatform()
    return PsutilPlatform()
