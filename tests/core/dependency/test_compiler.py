"""Tests for compiling catalog ceilings and direct requirements."""

from __future__ import annotations

import pytest

from lockstep.core.catalog import VersionCatalog
from lockstep.core.dependency import (
    PackageRequirement,
    RequirementSet,
    VersionConstraint,
    compile_constraints,
)
from lockstep.exceptions import CeilingExceeded, MalformedRequirement


@pytest.fixture
def catalog() -> VersionCatalog:
    return VersionCatalog.from_pairs(
        "14.3", [("numpy", "1.24.0"), ("requests", "2.28.0")]
    )


class TestRequirementSet:
    """Tests for parsing requirements.in style input."""

    def test_comments_and_blank_lines_are_ignored(self) -> None:
        reqs = RequirementSet.from_lines(
            "analytics", ["# header", "", "numpy<=1.26.0  # pinned", "  "]
        )
        assert reqs.requester == "analytics"
        assert [str(r) for r in reqs.requirements] == ["numpy<=1.26.0"]
        assert reqs.requirements[0].requester == "analytics"

    def test_last_declaration_wins(self) -> None:
        reqs = RequirementSet.from_lines("svc", ["numpy>=1.0", "requests", "NumPy==1.22.0"])
        assert [str(r) for r in reqs.requirements] == ["requests", "numpy==1.22.0"]

    def test_malformed_line_names_requester_and_line(self) -> None:
        with pytest.raises(MalformedRequirement, match="svc:2"):
            RequirementSet.from_lines("svc", ["numpy", "numpy~1.0"])


class TestCompileConstraints:
    """Tests for ``compile_constraints``."""

    def test_catalog_entries_become_ceilings(self, catalog: VersionCatalog) -> None:
        cs = compile_constraints(catalog, [])
        assert cs.revision == "14.3"
        assert cs.names == ["numpy", "requests"]
        assert cs.roots == []
        entry = cs.get("numpy")
        assert entry is not None
        assert entry.ceiling == "1.24.0"
        assert str(entry.constraint) == "<=1.24.0"
        assert entry.ceiling_source is not None
        assert entry.ceiling_source.requester == "catalog:14.3"

    def test_looser_request_is_clamped_to_ceiling(self, catalog: VersionCatalog) -> None:
        """A request for numpy<=1.26.0 compiles to numpy<=1.24.0."""
        reqs = RequirementSet.from_lines("analytics", ["numpy<=1.26.0"])
        entry = compile_constraints(catalog, [reqs]).get("numpy")
        assert entry is not None
        assert str(entry.constraint) == "<=1.24.0"
        assert entry.direct is True
        assert [s.requester for s in entry.direct_sources] == ["analytics"]

    def test_tightening_below_ceiling_is_allowed(self, catalog: VersionCatalog) -> None:
        reqs = RequirementSet.from_lines("analytics", ["numpy==1.22.0"])
        entry = compile_constraints(catalog, [reqs]).get("numpy")
        assert entry is not None
        assert str(entry.constraint) == "==1.22.0"

    @pytest.mark.parametrize(
        "line",
        ["numpy==1.26.0", "numpy>=1.25", "numpy>1.24.0", "numpy>=1.24.0,!=1.24.0"],
    )
    def test_widening_raises_ceiling_exceeded(
        self, catalog: VersionCatalog, line: str
    ) -> None:
        reqs = RequirementSet.from_lines("analytics", [line])
        with pytest.raises(CeilingExceeded) as excinfo:
            compile_constraints(catalog, [reqs])
        assert excinfo.value.name == "numpy"
        assert excinfo.value.ceiling == "1.24.0"
        assert "platform revision bump" in str(excinfo.value)

    def test_package_outside_catalog_has_no_ceiling(self, catalog: VersionCatalog) -> None:
        reqs = RequirementSet.from_lines("svc", ["urllib3>=2"])
        entry = compile_constraints(catalog, [reqs]).get("urllib3")
        assert entry is not None
        assert entry.ceiling is None
        assert str(entry.constraint) == ">=2"

    def test_self_contradicting_requirement_is_malformed(self) -> None:
        reqs = RequirementSet.from_lines("svc", ["numpy>=2.0,<1.0"])
        with pytest.raises(MalformedRequirement):
            compile_constraints(None, [reqs])

    def test_every_requester_is_kept(self) -> None:
        """Two modules asking for different exact pins both appear as sources."""
        a = RequirementSet.from_lines("module-a", ["libA==2.0"])
        b = RequirementSet.from_lines("module-b", ["libA==3.0"])
        entry = compile_constraints(None, [a, b]).get("liba")
        assert entry is not None
        assert [s.requester for s in entry.sources] == ["module-a", "module-b"]
        assert entry.constraint.is_satisfiable() is False

    def test_flat_requirements_are_accepted(self) -> None:
        reqs = [
            PackageRequirement("numpy", VersionConstraint(">=1.0"), "svc"),
            PackageRequirement("requests", VersionConstraint("*")),
        ]
        cs = compile_constraints(None, reqs)
        assert cs.roots == ["numpy", "requests"]
        entry = cs.get("requests")
        assert entry is not None
        assert entry.sources[0].requester == "direct"

    def test_mixed_input_is_rejected(self) -> None:
        with pytest.raises(TypeError):
            compile_constraints(None, ["numpy"])  # type: ignore[list-item]


class TestFingerprint:
    """Tests for constraint set fingerprints."""

    def test_identical_inputs_share_fingerprint(self, catalog: VersionCatalog) -> None:
        reqs = RequirementSet.from_lines("svc", ["numpy", "requests>=2"])
        one = compile_constraints(catalog, [reqs])
        two = compile_constraints(catalog, [reqs])
        assert one.fingerprint() == two.fingerprint()
        assert one.fingerprint().startswith("sha256:")

    def test_declaration_order_does_not_matter(self, catalog: VersionCatalog) -> None:
        one = RequirementSet.from_lines("svc", ["numpy", "requests"])
        two = RequirementSet.from_lines("svc", ["requests", "numpy"])
        assert (
            compile_constraints(catalog, [one]).fingerprint()
            == compile_constraints(catalog, [two]).fingerprint()
        )

    def test_different_constraints_differ(self, catalog: VersionCatalog) -> None:
        one = RequirementSet.from_lines("svc", ["numpy"])
        two = RequirementSet.from_lines("svc", ["numpy==1.22.0"])
        assert (
            compile_constraints(catalog, [one]).fingerprint()
            != compile_constraints(catalog, [two]).fingerprint()
        )
