"""Runtime state for one dbprov invocation.

Global CLI flags are collected into an ExecutionContext, which the
executor, services and steps read instead of passing flags around.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dbprov.core.config import AppConfig, DEFAULT_CONFIG_PATH
from dbprov.core.output import Console, console, Verbosity


@dataclass
class ExecutionContext:
    """Flags and lazily loaded configuration shared by a run.

    Attributes:
        dry_run: Report host changes instead of making them
        yes: Skip the confirmation prompt
        verbosity: Output verbosity level (0-3)
        no_color: Disable colored output
        config_path: YAML file holding the provisioning settings
    """

    dry_run: bool = False
    yes: bool = False
    verbosity: int = Verbosity.NORMAL
    no_color: bool = False

    config_path: Path = field(default_factory=lambda: DEFAULT_CONFIG_PATH)

    _config: Optional[AppConfig] = field(default=None, repr=False)
    _console: Console = field(default_factory=lambda: console, repr=False)

    def __post_init__(self) -> None:
        self._console.configure(
            verbosity=self.verbosity,
            dry_run=self.dry_run,
            no_color=self.no_color,
        )

    @property
    def config(self) -> AppConfig:
        """Settings plus resolved secrets, loaded on first access."""
        if self._config is None:
            self._config = AppConfig(config_path=self.config_path)
        return self._config

    @property
    def console(self) -> Console:
        return self._console

    @property
    def is_verbose(self) -> bool:
        return self.verbosity >= Verbosity.VERBOSE


def create_context(
    dry_run: bool = False,
    yes: bool = False,
    verbose: int = 0,
    quiet: bool = False,
    no_color: bool = False,
    config: Optional[Path] = None,
) -> ExecutionContext:
    """Build the context from the global CLI options.

    ``--quiet`` wins over any number of ``-v`` flags.
    """
    if quiet:
        verbosity = Verbosity.QUIET
    else:
        verbosity = min(Verbosity.NORMAL + verbose, Verbosity.DEBUG)

    return ExecutionContext(
        dry_run=dry_run,
        yes=yes,
        verbosity=verbosity,
        no_color=no_color,
        config_path=config or DEFAULT_CONFIG_PATH,
    )
