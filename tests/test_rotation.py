from __future__ import annotations

from datetime import timedelta

import pytest
from _util import CA_NAME, HOSTNAME, NOW, make_bundle, make_ca

from cert_rotator import (
    ArtifactBundle,
    KeyPairArtifacts,
    MalformedArtifactError,
    RotationEngine,
    RotationOutcome,
    RotationPolicy,
    lookahead_time,
    verify_certificate,
)
from cert_rotator import pem_codec
from cert_rotator.validator import dns_names


def test_bundle_mapping_uses_secret_key_names(bundle: ArtifactBundle) -> None:
    mapping = bundle.to_mapping()

    assert set(mapping) == {"ca.crt", "ca.key", "tls.crt", "tls.key"}
    assert ArtifactBundle.from_mapping(mapping) == bundle
    assert ArtifactBundle.from_mapping(None).is_empty
    assert ArtifactBundle.from_mapping({"ca.crt": b"x"}).leaf_key == b""


def test_empty_bundle_issues_ca_and_leaf(engine: RotationEngine) -> None:
    result = engine.rotate(ArtifactBundle(), HOSTNAME, now=NOW)

    assert result.outcome is RotationOutcome.CA
    assert result.changed
    assert not result.restart_requested
    ca_certificate = pem_codec.load_certificate(result.bundle.ca_cert)
    leaf_certificate = pem_codec.load_certificate(result.bundle.leaf_cert)
    assert ca_certificate.ca is True
    assert dns_names(ca_certificate) == [CA_NAME]
    assert dns_names(leaf_certificate) == [HOSTNAME]
    verify_certificate(
        result.bundle.ca_cert,
        result.bundle.leaf_cert,
        result.bundle.leaf_key,
        HOSTNAME,
        lookahead_time(NOW),
    )


def test_second_pass_is_a_fixed_point(engine: RotationEngine) -> None:
    first = engine.rotate(ArtifactBundle(), HOSTNAME, now=NOW)
    second = engine.rotate(first.bundle, HOSTNAME, now=NOW)

    assert second.outcome is RotationOutcome.NONE
    assert not second.changed
    assert second.bundle is first.bundle


def test_valid_bundle_is_left_alone(engine: RotationEngine, bundle: ArtifactBundle) -> None:
    result = engine.rotate(bundle, HOSTNAME, now=NOW)

    assert result.outcome is RotationOutcome.NONE
    assert result.bundle == bundle


def test_expiring_leaf_rotates_only_leaf(engine: RotationEngine) -> None:
    ca = make_ca(timedelta(days=5 * 365))
    bundle = make_bundle(ca, timedelta(days=10))

    result = engine.rotate(bundle, HOSTNAME, now=NOW)

    assert result.outcome is RotationOutcome.LEAF
    assert result.bundle.ca_cert == bundle.ca_cert
    assert result.bundle.ca_key == bundle.ca_key
    assert result.bundle.leaf_cert != bundle.leaf_cert
    assert result.bundle.leaf_key != bundle.leaf_key
    verify_certificate(
        result.bundle.ca_cert,
        result.bundle.leaf_cert,
        result.bundle.leaf_key,
        HOSTNAME,
        lookahead_time(NOW),
    )
    assert engine.rotate(result.bundle, HOSTNAME, now=NOW).outcome is RotationOutcome.NONE


def test_hostname_change_rotates_only_leaf(engine: RotationEngine, bundle: ArtifactBundle) -> None:
    result = engine.rotate(bundle, "renamed.system.svc", now=NOW)

    assert result.outcome is RotationOutcome.LEAF
    assert result.bundle.ca_cert == bundle.ca_cert
    assert dns_names(pem_codec.load_certificate(result.bundle.leaf_cert)) == [
        "renamed.system.svc"
    ]


def test_expiring_ca_rotates_everything(engine: RotationEngine) -> None:
    ca = make_ca(timedelta(days=10))
    bundle = make_bundle(ca, timedelta(days=10))

    result = engine.rotate(bundle, HOSTNAME, now=NOW)

    assert result.outcome is RotationOutcome.CA
    assert result.bundle.ca_cert != bundle.ca_cert
    assert result.bundle.ca_key != bundle.ca_key
    assert result.bundle.leaf_cert != bundle.leaf_cert
    verify_certificate(
        result.bundle.ca_cert,
        result.bundle.leaf_cert,
        result.bundle.leaf_key,
        HOSTNAME,
        lookahead_time(NOW),
    )


def test_new_ca_window_follows_policy(engine: RotationEngine) -> None:
    result = engine.rotate(ArtifactBundle(), HOSTNAME, now=NOW)
    validity = KeyPairArtifacts.from_pem(result.bundle.ca_cert, result.bundle.ca_key).validity

    assert validity.not_before == NOW - timedelta(hours=1)
    assert validity.not_after == NOW + timedelta(days=3650)


def test_corrupt_ca_triggers_full_rotation(engine: RotationEngine, bundle: ArtifactBundle) -> None:
    corrupt = ArtifactBundle(
        ca_cert=b"-----BEGIN CERTIFICATE-----\nAAAA\n-----END CERTIFICATE-----\n",
        ca_key=bundle.ca_key,
        leaf_cert=bundle.leaf_cert,
        leaf_key=bundle.leaf_key,
    )

    assert engine.rotate(corrupt, HOSTNAME, now=NOW).outcome is RotationOutcome.CA


def test_ca_for_other_name_is_rotated_when_self_check_enabled(
    engine: RotationEngine,
) -> None:
    bundle = make_bundle(make_ca(timedelta(days=3650), name="legacy-ca"), timedelta(days=3650))

    assert engine.rotate(bundle, HOSTNAME, now=NOW).outcome is RotationOutcome.CA


def test_ca_name_check_can_be_disabled() -> None:
    engine = RotationEngine(RotationPolicy(ca_name=CA_NAME, verify_ca_hostname=False))
    bundle = make_bundle(make_ca(timedelta(days=3650), name="legacy-ca"), timedelta(days=3650))

    assert engine.rotate(bundle, HOSTNAME, now=NOW).outcome is RotationOutcome.NONE


def test_restart_requested_only_after_change(bundle: ArtifactBundle) -> None:
    engine = RotationEngine(RotationPolicy(ca_name=CA_NAME, restart_on_refresh=True))

    assert not engine.rotate(bundle, HOSTNAME, now=NOW).restart_requested
    assert engine.rotate(ArtifactBundle(), HOSTNAME, now=NOW).restart_requested


def test_unrebuildable_ca_aborts_leaf_rotation(
    engine: RotationEngine,
    bundle: ArtifactBundle,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def _fail(*_args, **_kwargs):
        raise MalformedArtifactError("CA private key blob is missing.")

    monkeypatch.setattr(KeyPairArtifacts, "from_pem", classmethod(_fail))

    with pytest.raises(MalformedArtifactError):
        engine.rotate(bundle, "renamed.system.svc", now=NOW)


def test_clock_is_used_when_now_is_omitted(bundle: ArtifactBundle) -> None:
    engine = RotationEngine(RotationPolicy(ca_name=CA_NAME), clock=lambda: NOW)

    assert engine.rotate(bundle, HOSTNAME).outcome is RotationOutcome.NONE

    late_engine = RotationEngine(
        RotationPolicy(ca_name=CA_NAME), clock=lambda: NOW + timedelta(days=3600)
    )
    assert late_engine.rotate(bundle, HOSTNAME).outcome is RotationOutcome.CA


def test_rotate_requires_hostname(engine: RotationEngine, bundle: ArtifactBundle) -> None:
    with pytest.raises(ValueError, match="hostname"):
        engine.rotate(bundle, " ", now=NOW)


def test_surrounding_whitespace_in_hostname_does_not_force_rotation(engine: RotationEngine) -> None:
    first = engine.rotate(ArtifactBundle(), f" {HOSTNAME} ", now=NOW)
    second = engine.rotate(first.bundle, f"{HOSTNAME}\n", now=NOW)

    assert dns_names(pem_codec.load_certificate(first.bundle.leaf_cert)) == [HOSTNAME]
    assert second.outcome is RotationOutcome.NONE
    assert second.bundle is first.bundle


def test_policy_trims_ca_name() -> None:
    engine = RotationEngine(RotationPolicy(ca_name=f"  {CA_NAME} "))
    first = engine.rotate(ArtifactBundle(), HOSTNAME, now=NOW)

    assert engine.policy.ca_name == CA_NAME
    assert engine.rotate(first.bundle, HOSTNAME, now=NOW).outcome is RotationOutcome.NONE
    with pytest.raises(ValueError, match="ca_name"):
        RotationPolicy(ca_name="   ")
