"""Property-based tests for Kubernetes version parsing and ordering."""

import pytest
from hypothesis import given
from hypothesis import strategies as st

from minicluster.exceptions import ConfigurationError
from minicluster.version import parse_kubernetes_version, resolve_kubernetes_version

numbers = st.integers(min_value=0, max_value=40)
prerelease = st.sampled_from(["", "alpha.1", "alpha.2", "beta.0", "beta.2", "rc.1"])


@st.composite
def version_string(draw):
    """Generate versions like v1.17.3 or 1.18.0-beta.2."""
    major, minor, patch = draw(numbers), draw(numbers), draw(numbers)
    pre = draw(prerelease)
    prefix = draw(st.sampled_from(["", "v"]))
    base = f"{prefix}{major}.{minor}.{patch}"
    return f"{base}-{pre}" if pre else base


@given(raw=version_string())
def test_parse_round_trip(raw):
    """A parsed version prints back without the v prefix and tags with it."""
    v = parse_kubernetes_version(raw)
    assert str(v) == raw.lstrip("v")
    assert v.tag == "v" + raw.lstrip("v")
    assert parse_kubernetes_version(v.tag) == v


@given(a=version_string(), b=version_string())
def test_release_ordering_matches_numbers(a, b):
    """Versions order by major, minor and patch, with prereleases before releases."""
    va, vb = parse_kubernetes_version(a), parse_kubernetes_version(b)
    ka = (va.major, va.minor, va.patch)
    kb = (vb.major, vb.minor, vb.patch)

    if ka != kb:
        assert (va < vb) == (ka < kb)
    elif va.prerelease and not vb.prerelease:
        assert va < vb
    elif vb.prerelease and not va.prerelease:
        assert vb < va


@given(a=version_string(), b=version_string(), c=version_string())
def test_ordering_is_transitive(a, b, c):
    va, vb, vc = sorted(parse_kubernetes_version(x) for x in (a, b, c))
    assert va <= vb <= vc
    assert va <= vc


@given(
    existing=st.tuples(st.integers(12, 20), st.integers(0, 9)),
    requested=st.tuples(st.integers(12, 20), st.integers(0, 9)),
)
def test_resolve_never_downgrades(existing, requested):
    """Resolving refuses exactly the requests older than the existing cluster."""
    old = f"v1.{existing[0]}.{existing[1]}"
    new = f"v1.{requested[0]}.{requested[1]}"

    if requested < existing:
        with pytest.raises(ConfigurationError):
            resolve_kubernetes_version(new, old)
    else:
        assert resolve_kubernetes_version(new, old) == new
