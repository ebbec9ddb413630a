from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from .errors import ConfigError

logger = logging.getLogger(__name__)

RECIPES_DIR = Path(__file__).resolve().parent / "recipes"

ON_EXISTS_POLICIES = {"reuse", "recreate"}
RUNTIME_MANAGERS = {"conda", "venv", "none"}

DEFAULT_MINICONDA_URL = "https://repo.anaconda.com/miniconda/Miniconda3-latest-Linux-x86_64.sh"
DEFAULT_PYTHON = "3.10"


def _str_list(value: Any, *, where: str) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list):
        raise ConfigError(f"{where} must be a list")
    return [str(v).strip() for v in value if str(v).strip()]


def _expand(path: str) -> Path:
    return Path(path).expanduser()


@dataclass(frozen=True)
class DependencyGroup:
    name: str
    packages: Tuple[str, ...] = ()
    requirements: Tuple[str, ...] = ()
    exclude: Tuple[str, ...] = ()
    uninstall: Tuple[str, ...] = ()
    index_url: Optional[str] = None
    extra_args: Tuple[str, ...] = ()
    optional: bool = False


@dataclass(frozen=True)
class EnvironmentSpec:
    manager: str
    name: str
    runtime_version: str
    path: Path
    target_directory: Path
    on_exists: str = "recreate"
    package_groups: Tuple[DependencyGroup, ...] = ()

    @property
    def python_series(self) -> str:
        return ".".join(self.runtime_version.split(".")[:2])

    @property
    def bin_dir(self) -> Path:
        return self.path / "bin"

    @property
    def python(self) -> Path:
        return self.bin_dir / "python"


@dataclass(frozen=True)
class RuntimeSpec:
    manager: str
    prefix: Path
    installer_url: str
    init_shell: bool
    rc_file: Path
    on_exists: str = "reuse"


@dataclass(frozen=True)
class CudaSpec:
    version: str
    keyring_url: str
    packages: Tuple[str, ...]
    optional: bool = False

    @property
    def home(self) -> Path:
        return Path(f"/usr/local/cuda-{self.version}")


@dataclass(frozen=True)
class SourceSpec:
    repo: str
    path: Path
    ref: Optional[str] = None
    on_exists: str = "reuse"
    submodules: bool = False
    lfs: bool = False


@dataclass(frozen=True)
class ArtifactDescriptor:
    name: str
    destination: Path
    url: Optional[str] = None
    repo_id: Optional[str] = None
    sha256: Optional[str] = None
    include: Tuple[str, ...] = ()
    revision: Optional[str] = None
    expect: Tuple[str, ...] = ()
    optional: bool = False

    @property
    def is_repo(self) -> bool:
        return self.repo_id is not None


@dataclass(frozen=True)
class PatchSpec:
    name: str
    file: Path
    optional: bool = False


@dataclass(frozen=True)
class VerifySpec:
    imports: Tuple[str, ...] = ()
    files: Tuple[str, ...] = ()
    mandatory: bool = False

    @property
    def empty(self) -> bool:
        return not self.imports and not self.files


@dataclass(frozen=True)
class LauncherSpec:
    filename: str
    command: str
    env: Tuple[Tuple[str, str], ...] = ()


@dataclass(frozen=True)
class ProvisionConfig:
    raw: Dict[str, Any]
    base_dir: Path = field(default_factory=Path.cwd)

    def _section(self, key: str) -> Dict[str, Any]:
        value = self.raw.get(key) or {}
        if not isinstance(value, dict):
            raise ConfigError(f"{key} must be a mapping")
        return value

    @property
    def name(self) -> str:
        name = str(self.raw.get("name") or "").strip()
        if not name:
            raise ConfigError("recipe is missing 'name'")
        return name

    @property
    def target_dir(self) -> Path:
        return _expand(str(self.raw.get("target_dir") or f"~/{self.name}"))

    @property
    def work_dir(self) -> Path:
        # Kept outside target_dir so a fresh clone can own that directory.
        raw = self.raw.get("state_dir")
        if raw:
            return _expand(str(raw))
        return _expand(f"~/.local/state/demo-provisioner/{self.name}")

    @property
    def state_path(self) -> Path:
        return self.work_dir / "state.json"

    @property
    def log_path(self) -> Path:
        return self.work_dir / "provision.log"

    @property
    def report_path(self) -> Path:
        return self.work_dir / "report.json"

    @property
    def runtime(self) -> RuntimeSpec:
        rt = self._section("runtime")
        manager = str(rt.get("manager") or "conda")
        return RuntimeSpec(
            manager=manager,
            prefix=_expand(str(rt.get("prefix") or "~/miniconda3")),
            installer_url=str(rt.get("installer_url") or DEFAULT_MINICONDA_URL),
            init_shell=bool(rt.get("init_shell", manager == "conda")),
            rc_file=_expand(str(rt.get("rc_file") or "~/.bashrc")),
            on_exists=str(rt.get("on_exists") or "reuse"),
        )

    @property
    def environment(self) -> EnvironmentSpec:
        env = self._section("environment")
        runtime = self.runtime
        name = str(env.get("name") or self.name)
        if runtime.manager == "conda":
            path = runtime.prefix / "envs" / name
        else:
            raw_path = env.get("path")
            # Outside target_dir: the source tree is cloned there afterwards.
            path = _expand(str(raw_path)) if raw_path else _expand(f"~/.venvs/{name}")
            if not path.is_absolute():
                path = self.target_dir / path
        return EnvironmentSpec(
            manager=runtime.manager,
            name=name,
            runtime_version=str(env.get("python") or DEFAULT_PYTHON),
            path=path,
            target_directory=self.target_dir,
            on_exists=str(env.get("on_exists") or "recreate"),
            package_groups=tuple(self.dependencies),
        )

    @property
    def system_packages(self) -> List[str]:
        return _str_list(self._section("system_packages").get("packages"), where="system_packages.packages")

    @property
    def system_packages_optional(self) -> bool:
        return bool(self._section("system_packages").get("optional", False))

    @property
    def cuda(self) -> Optional[CudaSpec]:
        c = self._section("cuda")
        if not c:
            return None
        version = str(c.get("version") or "").strip()
        if not version:
            raise ConfigError("cuda.version is required")
        dashed = version.replace(".", "-")
        return CudaSpec(
            version=version,
            keyring_url=str(
                c.get("keyring_url")
                or "https://developer.download.nvidia.com/compute/cuda/repos/ubuntu2204/x86_64/cuda-keyring_1.1-1_all.deb"
            ),
            packages=tuple(_str_list(c.get("packages"), where="cuda.packages") or [f"cuda-toolkit-{dashed}"]),
            optional=bool(c.get("optional", False)),
        )

    @property
    def host_checks(self) -> Dict[str, Any]:
        return self._section("host_checks")

    @property
    def source(self) -> Optional[SourceSpec]:
        s = self._section("source")
        if not s:
            return None
        repo = str(s.get("repo") or "").strip()
        if not repo:
            raise ConfigError("source.repo is required")
        raw_dir = s.get("dir")
        path = self.target_dir if not raw_dir else _expand(str(raw_dir))
        if not path.is_absolute():
            path = self.target_dir / path
        return SourceSpec(
            repo=repo,
            path=path,
            ref=(str(s["ref"]) if s.get("ref") else None),
            on_exists=str(s.get("on_exists") or "reuse"),
            submodules=bool(s.get("submodules", False)),
            lfs=bool(s.get("lfs", False)),
        )

    @property
    def app_dir(self) -> Path:
        """Directory the application runs from; artifacts resolve against it."""
        src = self.source
        return src.path if src is not None else self.target_dir

    @property
    def dependencies(self) -> List[DependencyGroup]:
        raw = self.raw.get("dependencies") or []
        if not isinstance(raw, list):
            raise ConfigError("dependencies must be a list of groups")
        groups: List[DependencyGroup] = []
        for i, g in enumerate(raw):
            if not isinstance(g, dict):
                raise ConfigError(f"dependencies[{i}] must be a mapping")
            where = f"dependencies[{i}]"
            name = str(g.get("name") or f"group-{i + 1}")
            packages = _str_list(g.get("packages"), where=f"{where}.packages")
            requirements = _str_list(g.get("requirements"), where=f"{where}.requirements")
            if not packages and not requirements:
                raise ConfigError(f"{where} ({name}) needs packages or requirements")
            groups.append(
                DependencyGroup(
                    name=name,
                    packages=tuple(packages),
                    requirements=tuple(requirements),
                    exclude=tuple(_str_list(g.get("exclude"), where=f"{where}.exclude")),
                    uninstall=tuple(_str_list(g.get("uninstall"), where=f"{where}.uninstall")),
                    index_url=(str(g["index_url"]) if g.get("index_url") else None),
                    extra_args=tuple(_str_list(g.get("extra_args"), where=f"{where}.extra_args")),
                    optional=bool(g.get("optional", False)),
                )
            )
        return groups

    @property
    def patches(self) -> List[PatchSpec]:
        raw = self.raw.get("patches") or []
        if not isinstance(raw, list):
            raise ConfigError("patches must be a list")
        out: List[PatchSpec] = []
        for i, p in enumerate(raw):
            if not isinstance(p, dict) or not p.get("file"):
                raise ConfigError(f"patches[{i}] needs a 'file'")
            path = _expand(str(p["file"]))
            if not path.is_absolute():
                path = self.base_dir / path
            out.append(
                PatchSpec(
                    name=str(p.get("name") or path.stem),
                    file=path,
                    optional=bool(p.get("optional", False)),
                )
            )
        return out

    @property
    def artifacts(self) -> List[ArtifactDescriptor]:
        raw = self.raw.get("artifacts") or []
        if not isinstance(raw, list):
            raise ConfigError("artifacts must be a list")
        out: List[ArtifactDescriptor] = []
        for i, a in enumerate(raw):
            where = f"artifacts[{i}]"
            if not isinstance(a, dict):
                raise ConfigError(f"{where} must be a mapping")
            url = a.get("url")
            repo_id = a.get("repo_id")
            if bool(url) == bool(repo_id):
                raise ConfigError(f"{where} needs exactly one of 'url' or 'repo_id'")
            if not a.get("destination"):
                raise ConfigError(f"{where} needs a 'destination'")
            dest = _expand(str(a["destination"]))
            if not dest.is_absolute():
                dest = self.app_dir / dest
            out.append(
                ArtifactDescriptor(
                    name=str(a.get("name") or (repo_id or dest.name)),
                    destination=dest,
                    url=(str(url) if url else None),
                    repo_id=(str(repo_id) if repo_id else None),
                    sha256=(str(a["sha256"]).lower() if a.get("sha256") else None),
                    include=tuple(_str_list(a.get("include"), where=f"{where}.include")),
                    revision=(str(a["revision"]) if a.get("revision") else None),
                    expect=tuple(_str_list(a.get("expect"), where=f"{where}.expect")),
                    optional=bool(a.get("optional", False)),
                )
            )
        return out

    @property
    def verify(self) -> VerifySpec:
        v = self._section("verify")
        return VerifySpec(
            imports=tuple(_str_list(v.get("imports"), where="verify.imports")),
            files=tuple(_str_list(v.get("files"), where="verify.files")),
            mandatory=bool(v.get("mandatory", False)),
        )

    @property
    def launcher(self) -> Optional[LauncherSpec]:
        ln = self._section("launcher")
        if not ln:
            return None
        command = str(ln.get("command") or "").strip()
        if not command:
            raise ConfigError("launcher.command is required")
        env = ln.get("env") or {}
        if not isinstance(env, dict):
            raise ConfigError("launcher.env must be a mapping")
        return LauncherSpec(
            filename=str(ln.get("filename") or f"run_{self.name}.sh"),
            command=command,
            env=tuple((str(k), str(v)) for k, v in env.items()),
        )

    def validate(self) -> "ProvisionConfig":
        """Touch every section so malformed recipes fail before anything runs."""

        _ = self.name
        if self.runtime.manager not in RUNTIME_MANAGERS:
            raise ConfigError(f"runtime.manager must be one of {sorted(RUNTIME_MANAGERS)}")
        if self.runtime.on_exists not in ON_EXISTS_POLICIES:
            raise ConfigError(f"runtime.on_exists must be one of {sorted(ON_EXISTS_POLICIES)}")
        env = self.environment
        if env.manager == "none" and env.package_groups:
            raise ConfigError("dependencies need an environment (runtime.manager conda or venv)")
        if env.on_exists not in ON_EXISTS_POLICIES:
            raise ConfigError(f"environment.on_exists must be one of {sorted(ON_EXISTS_POLICIES)}")
        src = self.source
        if src is not None and src.on_exists not in ON_EXISTS_POLICIES:
            raise ConfigError(f"source.on_exists must be one of {sorted(ON_EXISTS_POLICIES)}")
        _ = self.system_packages
        _ = self.cuda
        _ = self.patches
        _ = self.artifacts
        _ = self.verify
        _ = self.launcher
        return self

    def with_overrides(
        self,
        *,
        target_dir: Optional[str] = None,
        env_name: Optional[str] = None,
        python: Optional[str] = None,
    ) -> "ProvisionConfig":
        raw = copy.deepcopy(self.raw)
        if target_dir:
            raw["target_dir"] = target_dir
        if env_name:
            raw.setdefault("environment", {})["name"] = env_name
        if python:
            raw.setdefault("environment", {})["python"] = python
        return ProvisionConfig(raw=raw, base_dir=self.base_dir)


def bundled_recipes() -> List[str]:
    return sorted(p.stem for p in RECIPES_DIR.glob("*.yaml"))


def resolve_recipe_path(recipe: str) -> Path:
    p = Path(recipe).expanduser()
    if p.exists():
        return p
    bundled = RECIPES_DIR / f"{recipe}.yaml"
    if bundled.exists():
        return bundled
    raise ConfigError(f"Recipe not found: {recipe} (bundled: {', '.join(bundled_recipes()) or 'none'})")


def load_config(recipe: str) -> ProvisionConfig:
    p = resolve_recipe_path(recipe)
    if p.suffix.lower() not in {".yaml", ".yml"}:
        raise ConfigError("recipe must be YAML")

    try:
        raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {p}: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigError(f"{p} must contain a mapping/object")

    logger.debug("Loaded recipe %s", p)
    return ProvisionConfig(raw=raw, base_dir=p.resolve().parent)
