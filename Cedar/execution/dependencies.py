"""
Dependency Resolver.

Attributes script failures to missing packages and installs them with pip
into the interpreter that runs notebook scripts. Also tracks every package
a project has touched as a DependencyRecord.
"""

from __future__ import annotations

import ast
import asyncio
import importlib.metadata
import json
import logging
import re
import sys
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

from ..utils import get_current_timestamp

logger = logging.getLogger("cedar.execution")


MISSING_MODULE_PATTERNS = [
    re.compile(r"No module named ['\"]([^'\"]+)['\"]"),
    re.compile(r"cannot import name ['\"][^'\"]+['\"] from ['\"]([^'\"]+)['\"]"),
]

# Import name -> distribution name, where they differ
PIP_NAME_OVERRIDES = {
    "sklearn": "scikit-learn",
    "bs4": "beautifulsoup4",
    "cv2": "opencv-python",
    "PIL": "Pillow",
    "yaml": "PyYAML",
    "skimage": "scikit-image",
    "dateutil": "python-dateutil",
    "Bio": "biopython",
    "dotenv": "python-dotenv",
}


class DependencySource(str, Enum):
    """How a dependency came to be tracked."""
    AUTO_DETECTED = "auto_detected"
    USER_DECLARED = "user_declared"


class DependencyStatus(str, Enum):
    PENDING = "pending"
    INSTALLED = "installed"
    FAILED = "failed"


class DependencyRecord(BaseModel):
    """Tracked state of one external package."""

    name: str = Field(..., description="Distribution name passed to pip")
    module: Optional[str] = Field(default=None, description="Import name, if known")
    source: DependencySource = DependencySource.AUTO_DETECTED
    status: DependencyStatus = DependencyStatus.PENDING
    error_message: Optional[str] = None
    version: Optional[str] = None
    required_by: list[int] = Field(default_factory=list, description="Step indices")
    updated_at: str = Field(default_factory=get_current_timestamp)

    model_config = {"extra": "forbid"}


def detect_missing_module(stderr: str) -> Optional[str]:
    """Return the top-level module named in a missing-module error, if any."""
    for pattern in MISSING_MODULE_PATTERNS:
        match = pattern.search(stderr)
        if match:
            return match.group(1).split(".")[0]
    return None


def pip_name_for(module: str) -> str:
    return PIP_NAME_OVERRIDES.get(module, module)


def detect_imports(code: str) -> list[str]:
    """
    Top-level third-party modules imported by a block of code.

    Standard-library modules and relative imports are skipped. Code that
    does not parse yields no imports.
    """
    try:
        tree = ast.parse(code)
    except SyntaxError:
        return []

    found: list[str] = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            names = [alias.name for alias in node.names]
        elif isinstance(node, ast.ImportFrom) and node.module and node.level == 0:
            names = [node.module]
        else:
            continue
        for name in names:
            top = name.split(".")[0]
            if top in sys.stdlib_module_names or top in found:
                continue
            found.append(top)
    return found


@dataclass
class InstallOutcome:
    success: bool
    output: str
    version: Optional[str] = None


class PackageInstaller:
    """Runs pip for the notebook interpreter."""

    def __init__(
        self,
        python_executable: str = sys.executable,
        timeout_seconds: int = 300,
        extra_args: Optional[list[str]] = None,
    ):
        self.python_executable = python_executable
        self.timeout_seconds = timeout_seconds
        self.extra_args = extra_args or []

    async def _run(self, *args: str, timeout: float) -> tuple[int, str, str]:
        process = await asyncio.create_subprocess_exec(
            self.python_executable, "-m", "pip", *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            return -1, "", f"pip {args[0]} timed out after {timeout}s"
        return (
            process.returncode if process.returncode is not None else -1,
            stdout.decode("utf-8", errors="replace"),
            stderr.decode("utf-8", errors="replace"),
        )

    async def install(self, package: str) -> InstallOutcome:
        """Install a package. Never raises for pip-level failures."""
        try:
            rc, out, err = await self._run(
                "install", package, *self.extra_args, timeout=self.timeout_seconds,
            )
        except OSError as e:
            return InstallOutcome(success=False, output=f"Could not run pip: {e}")

        if rc != 0:
            return InstallOutcome(success=False, output=(err or out).strip())

        version = None
        try:
            pkg_name = re.split(r"[\[<>=!~]", package, maxsplit=1)[0]
            version = importlib.metadata.version(pkg_name)
        except importlib.metadata.PackageNotFoundError:
            pass  # installed into a different interpreter
        return InstallOutcome(success=True, output=out.strip(), version=version)

    async def list_installed(self, name_filter: Optional[str] = None) -> list[dict]:
        """List installed distributions as pip reports them."""
        rc, out, err = await self._run("list", "--format=json", timeout=60)
        if rc != 0:
            raise RuntimeError(f"Failed to list packages: {err.strip()}")
        packages = json.loads(out)
        if name_filter:
            packages = [p for p in packages if name_filter.lower() in p["name"].lower()]
        return packages


class DependencyResolver:
    """
    Detects missing packages in failure text and installs them.

    Matching is pattern based; an unrecognized phrasing means no install.
    """

    def __init__(
        self,
        installer: Optional[PackageInstaller] = None,
        auto_install: bool = True,
        working_dir: Optional[str] = None,
    ):
        self.installer = installer or PackageInstaller()
        self.auto_install = auto_install
        # Scripts run here; modules found in it are the user's own files
        self.working_dir = working_dir
        self.records: dict[str, DependencyRecord] = {}

    def is_local_module(self, module: str) -> bool:
        base = Path(self.working_dir) if self.working_dir else Path.cwd()
        return (base / f"{module}.py").is_file() or (base / module).is_dir()

    async def detect_and_install(
        self,
        stderr: str,
        step_index: Optional[int] = None,
    ) -> Optional[DependencyRecord]:
        """
        Install the package a failure points at.

        Returns None when no missing-module signature matches. Otherwise the
        returned record carries the install outcome; install failures are
        reported through the record, not raised.
        """
        module = detect_missing_module(stderr)
        if module is None:
            return None

        package = pip_name_for(module)
        logger.info("Missing module %r detected, package %r", module, package)

        if not self.auto_install:
            return self._track(
                package,
                module=module,
                source=DependencySource.AUTO_DETECTED,
                status=DependencyStatus.PENDING,
                error_message=stderr.strip()[-1000:],
                step_index=step_index,
            )

        return await self.install(
            package,
            module=module,
            source=DependencySource.AUTO_DETECTED,
            trigger=stderr.strip()[-1000:],
            step_index=step_index,
        )

    async def install(
        self,
        package: str,
        module: Optional[str] = None,
        source: DependencySource = DependencySource.USER_DECLARED,
        trigger: Optional[str] = None,
        step_index: Optional[int] = None,
    ) -> DependencyRecord:
        """Run one install attempt and record its outcome."""
        outcome = await self.installer.install(package)
        if outcome.success:
            logger.info("Installed %s %s", package, outcome.version or "")
            return self._track(
                package,
                module=module,
                source=source,
                status=DependencyStatus.INSTALLED,
                error_message=trigger,
                version=outcome.version,
                step_index=step_index,
            )

        logger.warning("Failed to install %s: %s", package, outcome.output[:300])
        return self._track(
            package,
            module=module,
            source=source,
            status=DependencyStatus.FAILED,
            error_message=outcome.output or trigger,
            step_index=step_index,
        )

    def record_imports(self, code: str, step_index: Optional[int] = None) -> list[DependencyRecord]:
        """Track third-party imports of code that has already run successfully."""
        tracked = []
        for module in detect_imports(code):
            if self.is_local_module(module):
                continue
            package = pip_name_for(module)
            existing = self.records.get(package)
            status = DependencyStatus.INSTALLED if existing is None else existing.status
            if status == DependencyStatus.FAILED:
                # The import worked, so whatever failed earlier is resolved
                status = DependencyStatus.INSTALLED
            tracked.append(self._track(
                package,
                module=module,
                source=existing.source if existing else DependencySource.AUTO_DETECTED,
                status=status,
                error_message=existing.error_message if existing else None,
                version=existing.version if existing else None,
                step_index=step_index,
            ))
        return tracked

    def _track(
        self,
        package: str,
        module: Optional[str],
        source: DependencySource,
        status: DependencyStatus,
        error_message: Optional[str] = None,
        version: Optional[str] = None,
        step_index: Optional[int] = None,
    ) -> DependencyRecord:
        existing = self.records.get(package)
        required_by = list(existing.required_by) if existing else []
        if step_index is not None and step_index not in required_by:
            required_by.append(step_index)

        record = DependencyRecord(
            name=package,
            module=module or (existing.module if existing else None),
            source=source,
            status=status,
            error_message=error_message,
            version=version,
            required_by=required_by,
        )
        self.records[package] = record
        return record

    def list_records(self) -> list[DependencyRecord]:
        return list(self.records.values())

    def load_records(self, records: list[DependencyRecord]) -> None:
        """Seed the registry from persisted project records."""
        for record in records:
            self.records[record.name] = record
