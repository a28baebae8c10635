from __future__ import annotations

from datetime import timedelta

import pytest
from _util import CA_NAME, CA_ORGANIZATION, make_bundle, make_ca

from cert_rotator import ArtifactBundle, KeyPairArtifacts, RotationEngine, RotationPolicy


@pytest.fixture(scope="session")
def ca() -> KeyPairArtifacts:
    return make_ca(timedelta(days=3650))


@pytest.fixture(scope="session")
def bundle(ca: KeyPairArtifacts) -> ArtifactBundle:
    return make_bundle(ca, timedelta(days=3650))


@pytest.fixture
def policy() -> RotationPolicy:
    return RotationPolicy(ca_name=CA_NAME, ca_organization=CA_ORGANIZATION)


@pytest.fixture
def engine(policy: RotationPolicy) -> RotationEngine:
    return RotationEngine(policy)
