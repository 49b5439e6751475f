"""
Machine Identity — Platform-specific host identifiers for key binding.

Each platform exposes its identifier differently:
- Linux/Unix: ``/etc/machine-id`` (fallback ``/var/lib/dbus/machine-id``)
- macOS: ``IOPlatformUUID`` from ``ioreg``
- Windows: ``UUID`` from ``wmic csproduct``

The strategy is picked once via ``select_identity_source()`` and handed
to the KeyStore, so tests can swap in a ``StaticIdentitySource``.

Security Note:
    Machine identifiers are low-entropy and guessable. They are only one
    input to key derivation and are never persisted or logged.
"""
import re
import asyncio
import logging
import platform
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Sequence

from ..exceptions import IdentityUnavailable
from .config import DEFAULT_IDENTITY_TIMEOUT

logger = logging.getLogger("device_vault.vault")

_UUID_PATTERN = re.compile(
    r"[0-9A-Fa-f]{8}-[0-9A-Fa-f]{4}-[0-9A-Fa-f]{4}-[0-9A-Fa-f]{4}-[0-9A-Fa-f]{12}"
)

MACHINE_ID_PATHS = ("/etc/machine-id", "/var/lib/dbus/machine-id")


def extract_marked_uuid(output: str, marker: str) -> str:
    """Find the UUID-shaped token that follows ``marker`` in command output.

    The token is located by its marker field, not by line or column
    position, since tool output layout varies across OS releases.

    Raises:
        IdentityUnavailable: If no line carries the marker followed by a UUID.
    """
    for line in output.splitlines():
        _, found, rest = line.partition(marker)
        if not found:
            continue
        match = _UUID_PATTERN.search(rest)
        if match:
            return match.group(0).strip()
    raise IdentityUnavailable(f"Marker {marker!r} with a UUID not found in output")


class IdentitySource(ABC):
    """Capability interface for resolving the current machine identity."""

    name: str = "abstract"

    @abstractmethod
    async def resolve(self) -> str:
        """Return the trimmed machine identifier.

        Raises:
            IdentityUnavailable: If the identifier cannot be obtained.
        """

    def __repr__(self) -> str:
        return f"<{type(self).__name__} name={self.name}>"


class StaticIdentitySource(IdentitySource):
    """Fixed identity, for tests or hosts that supply their own identifier."""

    name = "static"

    def __init__(self, machine_id: str):
        self._machine_id = machine_id

    async def resolve(self) -> str:
        value = self._machine_id.strip()
        if not value:
            raise IdentityUnavailable("Static machine identity is empty")
        return value


class MachineIdFileSource(IdentitySource):
    """Reads the machine identifier from a well-known file.

    Paths are tried in order; the next one is used only if the previous
    one cannot be read.
    """

    name = "machine-id"

    def __init__(self, paths: Optional[Sequence] = None):
        self._paths = [Path(p) for p in (paths or MACHINE_ID_PATHS)]

    def _read(self) -> str:
        last_error: Optional[OSError] = None
        for path in self._paths:
            try:
                content = path.read_text(encoding="utf-8")
            except OSError as err:
                last_error = err
                continue
            except UnicodeDecodeError as err:
                raise IdentityUnavailable(
                    f"Machine identity file {path} is not valid text"
                ) from err
            value = content.strip()
            if not value:
                raise IdentityUnavailable(f"Machine identity file {path} is empty")
            return value
        raise IdentityUnavailable(
            f"No readable machine identity file among "
            f"{[str(p) for p in self._paths]}: {last_error}"
        ) from last_error

    async def resolve(self) -> str:
        return await asyncio.to_thread(self._read)


class CommandIdentitySource(IdentitySource):
    """Runs an introspection command and parses the identifier from stdout.

    The wait is bounded by ``timeout`` seconds; a stalled tool is killed
    and reported as ``IdentityUnavailable``.
    """

    name = "command"
    command: tuple = ()

    def __init__(
        self,
        command: Optional[Sequence[str]] = None,
        timeout: float = DEFAULT_IDENTITY_TIMEOUT,
    ):
        if command is not None:
            self.command = tuple(command)
        if not self.command:
            raise ValueError("CommandIdentitySource requires a command")
        self._timeout = timeout

    @abstractmethod
    def parse(self, output: str) -> str:
        """Extract the identifier from decoded command output."""

    async def _run(self) -> str:
        program = self.command[0]
        try:
            proc = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as err:
            raise IdentityUnavailable(
                f"Cannot run identity command {program!r}: {err}"
            ) from err

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(), timeout=self._timeout,
            )
        except asyncio.TimeoutError as err:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
            await proc.wait()
            raise IdentityUnavailable(
                f"Identity command {program!r} timed out after {self._timeout}s"
            ) from err

        if proc.returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip()
            raise IdentityUnavailable(
                f"Identity command {program!r} failed with status "
                f"{proc.returncode}: {detail}"
            )
        try:
            output = stdout.decode("utf-8").strip()
        except UnicodeDecodeError as err:
            raise IdentityUnavailable(
                f"Identity command {program!r} produced non UTF-8 output"
            ) from err
        if not output:
            raise IdentityUnavailable(f"Identity command {program!r} produced no output")
        return output

    async def resolve(self) -> str:
        output = await self._run()
        return self.parse(output).strip()


class IORegIdentitySource(CommandIdentitySource):
    """macOS: ``IOPlatformUUID`` of the platform expert device."""

    name = "ioreg"
    command = ("ioreg", "-rd1", "-c", "IOPlatformExpertDevice")
    marker = "IOPlatformUUID"

    def parse(self, output: str) -> str:
        return extract_marked_uuid(output, self.marker)


class WmicIdentitySource(CommandIdentitySource):
    """Windows: SMBIOS product UUID reported by ``wmic``."""

    name = "wmic"
    command = ("wmic", "csproduct", "get", "UUID", "/value")
    marker = "UUID"

    def parse(self, output: str) -> str:
        return extract_marked_uuid(output, self.marker)


def select_identity_source(
    system: Optional[str] = None,
    timeout: float = DEFAULT_IDENTITY_TIMEOUT,
) -> IdentitySource:
    """Pick the identity strategy for a platform.

    Args:
        system: Platform name as reported by ``platform.system()``.
            Defaults to the running platform.
        timeout: Bound for command-based lookups, in seconds.

    Returns:
        An IdentitySource for the platform.
    """
    system = system or platform.system()
    if system == "Darwin":
        source: IdentitySource = IORegIdentitySource(timeout=timeout)
    elif system == "Windows":
        source = WmicIdentitySource(timeout=timeout)
    else:
        source = MachineIdFileSource()
    logger.debug("Selected machine identity source %s for %s", source.name, system)
    return source
