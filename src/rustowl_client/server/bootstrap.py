# File: rustowl_client/server/bootstrap.py

"""Locates, validates and installs the RustOwl server binary.

Resolution order, first success wins:

1. An explicitly configured ``server.path``. If it does not answer
   ``--version --quiet`` this is a hard error; auto-resolution is never used
   as a silent fallback for an explicit override.
2. A binary in a known install location (the cargo bin directory, then the
   release build inside the cache clone).
3. ``rustowl`` on the ambient ``PATH``.

If nothing valid and current is found, installation is attempted with
``cargo-binstall`` and then by building the cached clone of the source
repository with ``cargo install``. When both fail, the user gets the exact
commands to run by hand. The cache directory is only replaced when it is
absent, empty or a clone of the configured repository.

All subprocesses go through `CommandRunner`, which runs `subprocess.run` in
the event loop's default executor so installs never block the loop.
"""

import asyncio
import enum
import functools
import logging
import os
import pathlib
import shutil
import subprocess
import sys
from dataclasses import dataclass
from typing import List, NoReturn, Optional, Sequence, Tuple

from rustowl_client.config.loader import ConfigStore
from rustowl_client.config.settings import ServerSettings, get_server_settings
from rustowl_client.editor.host import EditorHost
from rustowl_client.server.version import needs_update

logger = logging.getLogger(__name__)

# --- Constants ---
EXE_EXT = ".exe" if sys.platform == "win32" else ""
BINARY_NAME = f"rustowl{EXE_EXT}"
VERSION_ARGS = ["--version", "--quiet"]
VERSION_CHECK_TIMEOUT = 10  # Seconds
PROGRESS_TITLE = "RustOwl"


# --- Exceptions ---


class BootstrapError(Exception):
    """Base class for failures to produce a runnable server command."""


class ConfiguredServerError(BootstrapError):
    """The explicitly configured server path is not a valid executable.

    Attributes:
        path (str): The configured path that failed validation.
    """

    def __init__(self, path: str):
        self.path = path
        super().__init__(f'Configured serverPath "{path}" is not a valid rustowl executable')


class InstallationError(BootstrapError):
    """No valid server binary was found and none could be installed."""


class UnmanagedCacheDirError(InstallationError):
    """The cache directory exists but is not a clone this client manages.

    Attributes:
        path (pathlib.Path): The cache directory that was left untouched.
    """

    def __init__(self, path: pathlib.Path, repo_url: str):
        self.path = path
        super().__init__(
            f"Refusing to replace {path}: it is not empty and not a clone of {repo_url}. "
            "Point server.cache_dir (or RUSTOWL_CACHE_DIR) at an empty or dedicated directory."
        )


# --- Data Model ---


class Origin(enum.Enum):
    CONFIGURED = "configured"
    CACHED_INSTALL = "cached-install"
    GLOBAL_PATH = "global-path"


@dataclass(frozen=True)
class ServerLocation:
    path: str
    origin: Origin


def manual_install_instructions(settings: ServerSettings) -> str:
    """Copy-pasteable commands for installing the server by hand."""
    return (
        "RustOwl installation failed. Please install manually:\n"
        f"git clone {settings.repo_url} {settings.cache_dir}\n"
        f"cd {settings.cache_dir} && cargo install --path . --locked"
    )


# --- Subprocess Runner ---


class CommandRunner:
    """Runs external commands without blocking the event loop.

    Attributes:
        timeout (float): Default timeout in seconds for each command.
    """

    def __init__(self, timeout: float = 1800):
        self.timeout = timeout

    async def run(
        self,
        args: Sequence[str],
        cwd: Optional[pathlib.Path] = None,
        timeout: Optional[float] = None,
    ) -> subprocess.CompletedProcess:
        """Runs a command and captures its output.

        Args:
            args: Program and arguments.
            cwd: Working directory, if any.
            timeout: Overrides the default timeout.

        Returns:
            The completed process. A non-zero return code is not an error here.

        Raises:
            OSError: If the program cannot be executed (e.g. not found).
            subprocess.TimeoutExpired: If the command exceeds the timeout.
        """
        loop = asyncio.get_running_loop()
        run_args = {
            "args": list(args),
            "capture_output": True,
            "text": True,
            "encoding": "utf-8",
            "errors": "replace",
            "cwd": str(cwd) if cwd else None,
            "timeout": timeout if timeout is not None else self.timeout,
            "check": False,
        }
        logger.debug(f"Running: {' '.join(args)}" + (f" in {cwd}" if cwd else ""))
        result = await loop.run_in_executor(None, functools.partial(subprocess.run, **run_args))
        logger.debug(f"'{args[0]}' return code: {result.returncode}")
        if result.returncode != 0 and result.stderr:
            logger.debug(f"'{args[0]}' stderr:\n{result.stderr}")
        return result

    async def version_output(self, command: str) -> str:
        """Returns the trimmed output of ``command --version --quiet``, or ""."""
        try:
            result = await self.run([command, *VERSION_ARGS], timeout=VERSION_CHECK_TIMEOUT)
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug(f"Version check of '{command}' failed: {e}")
            return ""
        return (result.stdout or "").strip()

    async def command_exists(self, command: str) -> bool:
        try:
            result = await self.run([command, "--version"], timeout=VERSION_CHECK_TIMEOUT)
        except (OSError, subprocess.TimeoutExpired):
            return False
        return result.returncode == 0


# --- Resolver ---


class BinaryResolver:
    """Produces a runnable server command, installing the server if needed.

    Settings are read from the store on every call, so a restart picks up
    configuration edits.

    Attributes:
        store (ConfigStore): Configuration source.
        runner (CommandRunner): Executes version checks, git and cargo.
        host (Optional[EditorHost]): Receives install progress.
    """

    def __init__(
        self,
        store: ConfigStore,
        runner: Optional[CommandRunner] = None,
        host: Optional[EditorHost] = None,
    ):
        self.store = store
        self.runner = runner or CommandRunner()
        self.host = host

    def _progress(self, message: str) -> None:
        logger.info(f"{PROGRESS_TITLE}: {message}")
        if self.host is not None:
            self.host.report_progress(PROGRESS_TITLE, message)

    async def resolve(self, force_install: bool = False) -> ServerLocation:
        """Resolves the server location.

        Args:
            force_install: Skip the "already installed and current" shortcut
                and always attempt an installation (used by update).

        Returns:
            The location of a binary that answered the version query.

        Raises:
            ConfiguredServerError: If an explicit path is configured but invalid.
            InstallationError: If nothing valid exists and installation failed.
        """
        settings = get_server_settings(self.store)

        if settings.path:
            version = await self.runner.version_output(settings.path)
            if not version:
                raise ConfiguredServerError(settings.path)
            if force_install:
                logger.warning(f"Explicit server path '{settings.path}' is configured; skipping reinstall.")
            logger.info(f"Using configured server path: {settings.path} ({version})")
            return ServerLocation(settings.path, Origin.CONFIGURED)

        found = await self.find_installed(settings)
        if found is not None and not force_install:
            location, version = found
            if not needs_update(version, settings.required_version):
                logger.info(f"Using {location.origin.value} server {location.path} ({version})")
                return location
            logger.warning(
                f"Server {location.path} reports '{version}', required "
                f"'{settings.required_version}'. Installing update..."
            )

        return await self.install(settings)

    def candidate_paths(self, settings: ServerSettings) -> List[pathlib.Path]:
        return [
            settings.install_dir / BINARY_NAME,
            settings.cache_dir / "target" / "release" / BINARY_NAME,
        ]

    async def find_installed(self, settings: Optional[ServerSettings] = None) -> Optional[Tuple[ServerLocation, str]]:
        """Looks for an existing binary that answers the version query.

        Returns:
            ``(location, version_output)`` for the first valid candidate, or None.
        """
        settings = settings or get_server_settings(self.store)
        for candidate in self.candidate_paths(settings):
            if not candidate.exists():
                continue
            version = await self.runner.version_output(str(candidate))
            if version:
                return ServerLocation(str(candidate), Origin.CACHED_INSTALL), version
            logger.debug(f"Candidate {candidate} exists but gave no version output.")

        version = await self.runner.version_output("rustowl")
        if version:
            return ServerLocation("rustowl", Origin.GLOBAL_PATH), version
        return None

    async def install(self, settings: Optional[ServerSettings] = None) -> ServerLocation:
        """Installs the server via cargo-binstall or a source build.

        Raises:
            InstallationError: With manual instructions if every path failed.
        """
        settings = settings or get_server_settings(self.store)
        instructions = manual_install_instructions(settings)

        if not await self.runner.command_exists("cargo") or not await self.runner.command_exists("git"):
            message = (
                "RustOwl requires cargo and git. Please install Rust via rustup.rs "
                "and ensure git is available.\n" + instructions
            )
            self._fail(message)

        if await self._try_binstall():
            found = await self.find_installed(settings)
            if found is not None:
                return found[0]
            logger.warning("cargo-binstall reported success but no valid binary was found.")

        if await self._build_from_source(settings):
            target_binary = settings.cache_dir / "target" / "release" / BINARY_NAME
            if target_binary.exists():
                create_symlink(target_binary, settings.install_dir)
                if await self.runner.version_output(str(target_binary)):
                    self._progress("Installation complete")
                    return ServerLocation(str(target_binary), Origin.CACHED_INSTALL)
            found = await self.find_installed(settings)
            if found is not None:
                return found[0]

        self._fail(instructions)

    def _fail(self, message: str) -> NoReturn:
        logger.error(message)
        raise InstallationError(message)

    async def _try_binstall(self) -> bool:
        if not await self.runner.command_exists("cargo-binstall"):
            self._progress("cargo-binstall not found, skipping")
            return False
        self._progress("Installing via cargo-binstall...")
        try:
            result = await self.runner.run(["cargo-binstall", "--no-confirm", "rustowl"])
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning(f"cargo-binstall failed: {e}")
            return False
        if result.returncode != 0:
            self._progress("cargo-binstall failed")
            return False
        return True

    async def _owns_cache_dir(self, settings: ServerSettings) -> bool:
        """True if the cache directory may be deleted and re-cloned.

        That is the case when it is absent, empty, or a git checkout whose
        ``origin`` is the configured repository.
        """
        cache_dir = settings.cache_dir
        if not cache_dir.exists():
            return True
        if not cache_dir.is_dir():
            return False
        if not any(cache_dir.iterdir()):
            return True
        if not (cache_dir / ".git").exists():
            return False
        try:
            result = await self.runner.run(
                ["git", "remote", "get-url", "origin"], cwd=cache_dir, timeout=VERSION_CHECK_TIMEOUT
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning(f"Could not read the origin of {cache_dir}: {e}")
            return False
        origin = (result.stdout or "").strip()
        return result.returncode == 0 and _same_repository(origin, settings.repo_url)

    async def _clone_or_pull(self, settings: ServerSettings) -> None:
        """Makes sure the cache directory is an up-to-date clone.

        A failed pull leaves no half-updated tree behind: the directory is
        deleted and cloned again. Only a directory that is absent, empty or a
        clone of ``repo_url`` is ever deleted.

        Raises:
            InstallationError: If cloning fails.
            UnmanagedCacheDirError: If the cache directory holds anything else.
        """
        cache_dir = settings.cache_dir
        if not await self._owns_cache_dir(settings):
            raise UnmanagedCacheDirError(cache_dir, settings.repo_url)

        if (cache_dir / ".git").exists():
            self._progress("Pulling latest changes...")
            result = await self.runner.run(["git", "pull", "--ff-only"], cwd=cache_dir)
            if result.returncode == 0:
                return
            self._progress("Pull failed, re-cloning...")
        else:
            self._progress("Cloning repository...")

        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, functools.partial(shutil.rmtree, cache_dir, ignore_errors=True))
        await loop.run_in_executor(None, functools.partial(os.makedirs, cache_dir.parent, exist_ok=True))
        result = await self.runner.run(["git", "clone", "--depth", "1", settings.repo_url, str(cache_dir)])
        if result.returncode != 0:
            raise InstallationError(f"git clone failed with code {result.returncode}: {result.stderr}")

    async def _build_from_source(self, settings: ServerSettings) -> bool:
        try:
            await self._clone_or_pull(settings)
            self._progress("Running cargo install (this may take a few minutes)...")
            result = await self.runner.run(
                ["cargo", "install", "--path", ".", "--locked"],
                cwd=settings.cache_dir,
                timeout=settings.install_timeout,
            )
        except UnmanagedCacheDirError as e:
            logger.error(str(e))
            raise
        except (InstallationError, OSError, subprocess.TimeoutExpired) as e:
            logger.error(f"Build from source failed: {e}")
            return False
        if result.returncode != 0:
            logger.error(f"cargo install failed with code {result.returncode}")
            return False
        return True


def _same_repository(origin: str, repo_url: str) -> bool:
    def normalize(url: str) -> str:
        url = url.strip().rstrip("/")
        return url[: -len(".git")] if url.endswith(".git") else url

    return bool(origin) and normalize(origin) == normalize(repo_url)


def create_symlink(binary_path: pathlib.Path, install_dir: pathlib.Path) -> Optional[pathlib.Path]:
    """Points ``<install_dir>/rustowl`` at a freshly built binary.

    An existing file or link at that location is replaced. Failures are logged
    and reported as None; the built binary remains usable without the link.
    """
    link_path = install_dir / BINARY_NAME
    try:
        install_dir.mkdir(parents=True, exist_ok=True)
        if link_path.is_symlink() or link_path.is_file():
            link_path.unlink()
        link_path.symlink_to(binary_path)
    except OSError as e:
        logger.warning(f"Could not create symlink: {e}")
        return None
    logger.info(f"Created symlink: {link_path} -> {binary_path}")
    return link_path


async def bootstrap(store: ConfigStore, host: Optional[EditorHost] = None, force_install: bool = False) -> ServerLocation:
    """Resolves (and if necessary installs) the server. See `BinaryResolver.resolve`."""
    settings = get_server_settings(store)
    resolver = BinaryResolver(store, runner=CommandRunner(timeout=settings.install_timeout), host=host)
    return await resolver.resolve(force_install=force_install)
