"""Project layout and domain registry.

A project is a directory holding ``.mulch/``::

    .mulch/
        mulch.config.yaml      domains, governance, engine tuning
        README.md
        expertise/<domain>.jsonl
"""

from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, Optional

import structlog

from .config import CONFIG_FILE, load_config, write_config
from .config_models import MulchConfig, validate_domain_name
from .errors import DomainExistsError, DomainNotFoundError, NotInitializedError, StorageIOError
from .models import ExpertiseRecord, utc_now
from .storage import DOMAIN_FILE_SUFFIX, DomainSnapshot, DomainStore

logger = structlog.get_logger()

MULCH_DIR = ".mulch"
EXPERTISE_DIR = "expertise"
README_FILE = "README.md"
GITATTRIBUTES_FILE = ".gitattributes"
GITATTRIBUTES_LINE = ".mulch/expertise/*.jsonl merge=union"

README_TEXT = """# .mulch/

Structured expertise recorded by coding agents: conventions, patterns,
failures, decisions, references and guides, one JSON record per line.

- `mulch.config.yaml`: known domains, governance limits, shelf life
- `expertise/<domain>.jsonl`: records for one domain

Domain files are merged with the `union` driver (see `.gitattributes`), so
records added on different branches combine without conflicts.
"""


class ExpertiseProject:
    """Entry point for opening domains of one project."""

    def __init__(
        self,
        root: str | Path,
        config: Optional[MulchConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.root = Path(root)
        self.mulch_dir = self.root / MULCH_DIR
        self.expertise_dir = self.mulch_dir / EXPERTISE_DIR
        self.config_path = self.mulch_dir / CONFIG_FILE
        self._config = config
        self._clock = clock

    def __repr__(self) -> str:
        return f"ExpertiseProject(root={str(self.root)!r})"

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def init(
        cls,
        root: str | Path,
        config: Optional[MulchConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> "ExpertiseProject":
        """Create the layout. Existing config and README are left alone."""
        project = cls(root, clock=clock)
        try:
            project.expertise_dir.mkdir(parents=True, exist_ok=True)
            if not project.config_path.exists():
                write_config(config or MulchConfig(), project.config_path)
            readme = project.mulch_dir / README_FILE
            if not readme.exists():
                readme.write_text(README_TEXT, encoding="utf-8")
            project._ensure_gitattributes()
        except OSError as e:
            raise StorageIOError(f"Cannot initialize {project.mulch_dir}: {e}", path=str(project.mulch_dir)) from e
        logger.info("project_initialized", root=str(project.root))
        return project

    @classmethod
    def discover(
        cls,
        start: Optional[str | Path] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> "ExpertiseProject":
        """Find the nearest ancestor of ``start`` (default: cwd) holding ``.mulch/``."""
        origin = Path(start or Path.cwd()).resolve()
        for candidate in (origin, *origin.parents):
            if (candidate / MULCH_DIR).is_dir():
                return cls(candidate, clock=clock)
        raise NotInitializedError(str(origin))

    def _ensure_gitattributes(self) -> None:
        path = self.root / GITATTRIBUTES_FILE
        existing = path.read_text(encoding="utf-8") if path.exists() else ""
        if GITATTRIBUTES_LINE in existing.splitlines():
            return
        separator = "\n" if existing and not existing.endswith("\n") else ""
        path.write_text(f"{existing}{separator}{GITATTRIBUTES_LINE}\n", encoding="utf-8")

    # ------------------------------------------------------------------
    # Config
    # ------------------------------------------------------------------

    @property
    def clock(self) -> Callable[[], datetime]:
        return self._clock

    @property
    def initialized(self) -> bool:
        return self.mulch_dir.is_dir()

    @property
    def config(self) -> MulchConfig:
        if self._config is None:
            if not self.initialized:
                raise NotInitializedError(str(self.root))
            self._config = load_config(self.config_path)
        return self._config

    def reload_config(self) -> MulchConfig:
        self._config = None
        return self.config

    def save_config(self) -> None:
        write_config(self.config, self.config_path)

    # ------------------------------------------------------------------
    # Domains
    # ------------------------------------------------------------------

    def list_domains(self) -> list[str]:
        return list(self.config.domains)

    def domain_path(self, name: str) -> Path:
        validate_domain_name(name)
        return self.expertise_dir / f"{name}{DOMAIN_FILE_SUFFIX}"

    def _store(self, name: str) -> DomainStore:
        locking = self.config.locking_settings()
        return DomainStore(
            self.domain_path(name),
            domain=name,
            lock_timeout=locking.timeout,
            lock_retry_interval=locking.retry_interval,
            lock_stale_after=locking.stale_after,
            clock=self._clock,
        )

    def open_domain(self, name: str, create: bool = False) -> DomainStore:
        """Store for a configured domain; ``create`` registers it first if needed."""
        validate_domain_name(name)
        if name not in self.config.domains:
            if not create:
                raise DomainNotFoundError(name, self.list_domains())
            return self.add_domain(name)
        return self._store(name)

    def add_domain(self, name: str) -> DomainStore:
        validate_domain_name(name)
        if name in self.config.domains:
            raise DomainExistsError(name)
        store = self._store(name)
        store.ensure_file()
        self.config.domains.append(name)
        self.save_config()
        logger.info("domain_added", domain=name)
        return store

    def remove_domain(self, name: str, delete_file: bool = True) -> None:
        validate_domain_name(name)
        if name not in self.config.domains:
            raise DomainNotFoundError(name, self.list_domains())
        if delete_file:
            self._store(name).remove_file()
        self.config.domains.remove(name)
        self.save_config()
        logger.info("domain_removed", domain=name, file_deleted=delete_file)

    def _select_domains(self, domains: Optional[Iterable[str]], exclude_domains: Iterable[str] = ()) -> list[str]:
        configured = self.list_domains()
        if domains is None:
            selected = configured
        else:
            selected = list(domains)
            for name in selected:
                if name not in configured:
                    raise DomainNotFoundError(name, configured)
        excluded = set(exclude_domains)
        return [d for d in selected if d not in excluded]

    def read_domains(
        self,
        domains: Optional[Iterable[str]] = None,
        exclude_domains: Iterable[str] = (),
    ) -> dict[str, DomainSnapshot]:
        """Snapshots of the chosen domains (all configured by default), in config order."""
        return {name: self._store(name).read() for name in self._select_domains(domains, exclude_domains)}

    def load_records(
        self,
        domains: Optional[Iterable[str]] = None,
        exclude_domains: Iterable[str] = (),
    ) -> list[ExpertiseRecord]:
        """Records of several domains concatenated in config order."""
        records: list[ExpertiseRecord] = []
        for snapshot in self.read_domains(domains, exclude_domains).values():
            records.extend(snapshot.records)
        return records
