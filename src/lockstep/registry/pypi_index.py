"""Live package index backed by the PyPI JSON API.

Usage::

    index = PyPIIndex()
    asyncio.run(index.prefetch(["requests", "numpy"]))   # optional warm-up
    resolution = DependencyResolver(index).resolve(constraints)

Project metadata is fetched once per name and cached for the lifetime of
the index, so one resolution sees one consistent registry state. Release
metadata for all candidate versions of a package is fetched in one
concurrent batch. A registry that does not answer raises
``RegistryUnavailable`` and nothing is cached for that request, so a
network failure can never be mistaken for a release without dependencies.

Declared dependencies come from ``requires_dist``: environment markers are
evaluated against the target interpreter, extras-only requirements are
dropped, and specifiers the constraint grammar lacks are rewritten
(``~=1.4`` becomes ``>=1.4,<2``, ``==1.4.*`` becomes ``>=1.4,<1.5``).
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any

import httpx
from packaging.markers import default_environment
from packaging.requirements import InvalidRequirement, Requirement

from lockstep.core.dependency.constraints import (
    PackageRequirement,
    VersionConstraint,
    normalize_name,
    parse_version,
)
from lockstep.core.dependency.index import PackageIndex
from lockstep.exceptions import RegistryUnavailable
from lockstep.registry.http_client import DEFAULT_TIMEOUT, USER_AGENT, fetch_json

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

PYPI_BASE_URL: str = "https://pypi.org/pypi"
PYPI_PROJECT_API: str = "{base}/{package}/json"
PYPI_RELEASE_API: str = "{base}/{package}/{version}/json"

# Upper bound on in-flight release requests per batch.
DEFAULT_CONCURRENCY: int = 16


# ---------------------------------------------------------------------------
# PyPIIndex
# ---------------------------------------------------------------------------


class PyPIIndex(PackageIndex):
    """``PackageIndex`` over the PyPI JSON API.

    Args:
        base_url: JSON API root (a mirror or a private index).
        environment: Marker environment overrides, e.g.
            ``{"python_version": "3.11"}``.
        include_prereleases: Offer pre-release versions to the resolver.
        timeout: Request timeout in seconds.
        max_concurrency: Release requests allowed in flight at once.
    """

    def __init__(
        self,
        base_url: str = PYPI_BASE_URL,
        environment: dict[str, str] | None = None,
        include_prereleases: bool = False,
        timeout: float = DEFAULT_TIMEOUT,
        max_concurrency: int = DEFAULT_CONCURRENCY,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._environment: dict[str, str] = dict(default_environment())
        self._environment.update(environment or {})
        self._include_prereleases = include_prereleases
        self._timeout = timeout
        self._max_concurrency = max(1, max_concurrency)
        self._projects: dict[str, dict[str, Any]] = {}
        self._requires: dict[tuple[str, str], list[PackageRequirement]] = {}

    # -- PackageIndex -------------------------------------------------------

    def versions(self, name: str) -> list[str]:
        """Available versions, newest first. An unknown project has none.

        Raises:
            RegistryUnavailable: The project listing could not be fetched.
        """
        canonical = normalize_name(name)
        if canonical not in self._projects:
            url = PYPI_PROJECT_API.format(base=self._base_url, package=canonical)
            data = asyncio.run(fetch_json(url, timeout=self._timeout, strict=True))
            self._projects[canonical] = _as_dict(data)
        return self._available(canonical, self._projects[canonical])

    def dependencies(self, name: str, version: str) -> list[PackageRequirement]:
        return self.dependencies_of(name, [version])[version]

    def dependencies_of(
        self, name: str, versions: list[str]
    ) -> dict[str, list[PackageRequirement]]:
        """Dependencies of several versions, fetching uncached ones concurrently.

        Raises:
            RegistryUnavailable: Release metadata for a version could not
                be fetched. Versions fetched successfully stay cached.
        """
        canonical = normalize_name(name)
        missing = [v for v in dict.fromkeys(versions) if (canonical, v) not in self._requires]
        if missing:
            asyncio.run(self._fetch_releases(canonical, missing))
        return {v: list(self._requires[(canonical, v)]) for v in versions}

    # -- Warm-up ------------------------------------------------------------

    async def prefetch(self, names: list[str]) -> None:
        """Fetch project metadata for *names* concurrently into the cache.

        Projects the registry fails to return are left uncached; a later
        ``versions`` call retries them.
        """
        pending = sorted({normalize_name(n) for n in names} - set(self._projects))
        if not pending:
            return
        async with self._client() as client:
            results = await asyncio.gather(
                *(
                    fetch_json(
                        PYPI_PROJECT_API.format(base=self._base_url, package=name),
                        client=client,
                        strict=True,
                    )
                    for name in pending
                ),
                return_exceptions=True,
            )
        fetched = 0
        for name, data in zip(pending, results):
            if isinstance(data, RegistryUnavailable):
                logger.warning("Prefetch of %s failed: %s", name, data.reason)
                continue
            if isinstance(data, BaseException):
                raise data
            self._projects[name] = _as_dict(data)
            fetched += 1
        logger.info("Prefetched %d projects from %s", fetched, self._base_url)

    # -- Translation --------------------------------------------------------

    def translate_all(
        self, requires_dist: list[str], requester: str = ""
    ) -> list[PackageRequirement]:
        """Translate ``requires_dist`` entries that apply to this environment."""
        out: list[PackageRequirement] = []
        for text in requires_dist:
            req = self.translate(text, requester)
            if req is not None:
                out.append(req)
        return out

    def translate(self, text: str, requester: str = "") -> PackageRequirement | None:
        """Translate one PEP 508 requirement, or None if it does not apply.

        Unparseable entries are skipped with a warning.
        """
        try:
            req = Requirement(text)
        except InvalidRequirement as exc:
            logger.warning("Skipping unparseable requirement %r: %s", text, exc)
            return None
        if req.marker is not None:
            env = dict(self._environment)
            env.setdefault("extra", "")
            if not req.marker.evaluate(env):
                return None
        return PackageRequirement(
            name=normalize_name(req.name),
            constraint=VersionConstraint(specifier_to_constraint(str(req.specifier))),
            requester=requester,
        )

    # -- Internals ----------------------------------------------------------

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._timeout,
            headers={"User-Agent": USER_AGENT},
            follow_redirects=True,
        )

    async def _fetch_releases(self, name: str, versions: list[str]) -> None:
        limit = asyncio.Semaphore(self._max_concurrency)
        urls = [
            PYPI_RELEASE_API.format(base=self._base_url, package=name, version=v)
            for v in versions
        ]

        async def _one(url: str, client: httpx.AsyncClient) -> Any:
            async with limit:
                return await fetch_json(url, client=client, strict=True)

        async with self._client() as client:
            results = await asyncio.gather(
                *(_one(url, client) for url in urls), return_exceptions=True
            )

        failure: BaseException | None = None
        for version, url, data in zip(versions, urls, results):
            if isinstance(data, BaseException):
                failure = failure or data
                continue
            info = _as_dict(data).get("info")
            if not isinstance(info, dict):
                # The project listing offered this version, so a missing
                # release document is a registry failure.
                failure = failure or RegistryUnavailable(url, "no release metadata")
                continue
            self._requires[(name, version)] = self.translate_all(
                info.get("requires_dist") or [], requester=f"{name}=={version}"
            )
        if failure is not None:
            raise failure
        logger.debug("Fetched %d release documents for %s", len(versions), name)

    def _available(self, name: str, data: dict[str, Any]) -> list[str]:
        releases: dict[str, list[dict[str, Any]]] = data.get("releases") or {}
        found: list[tuple[Any, str]] = []
        for version, files in releases.items():
            if files and all(f.get("yanked", False) for f in files):
                continue
            try:
                parsed = parse_version(version)
            except ValueError:
                logger.warning("Skipping unparseable version %s==%r", name, version)
                continue
            if parsed.is_prerelease and not self._include_prereleases:
                continue
            found.append((parsed, version))
        found.sort(reverse=True)
        return [version for _, version in found]


def specifier_to_constraint(specifier: str) -> str:
    """Rewrite a PEP 440 specifier set into the constraint grammar.

    ``!=X.*`` exclusions cannot be expressed and are dropped with a
    warning; the result is then looser than the original.
    """
    atoms: list[str] = []
    for raw in (s.strip() for s in specifier.split(",")):
        if not raw:
            continue
        op = next(o for o in ("===", "~=", "==", "!=", ">=", "<=", ">", "<") if raw.startswith(o))
        version = raw[len(op):].strip()
        if op == "===":
            atoms.append(f"=={version}")
        elif op == "~=":
            release = version.split(".")
            atoms.append(f">={version}")
            atoms.append(f"<{_bump(release[:-1])}")
        elif op == "==" and version.endswith(".*"):
            prefix = version[:-2].split(".")
            atoms.append(f">={'.'.join(prefix)}")
            atoms.append(f"<{_bump(prefix)}")
        elif op == "!=" and version.endswith(".*"):
            logger.warning("Dropping unsupported exclusion %s", raw)
        else:
            atoms.append(f"{op}{version}")
    return ",".join(atoms) if atoms else "*"


def _bump(release: list[str]) -> str:
    """``["1", "4"] -> "1.5"``: increment the last numeric component."""
    head, last = release[:-1], release[-1]
    match = re.match(r"\d+", last)
    number = int(match.group()) if match else 0
    return ".".join(head + [str(number + 1)])


def _as_dict(data: dict[str, Any] | list[Any]) -> dict[str, Any]:
    return data if isinstance(data, dict) else {}
