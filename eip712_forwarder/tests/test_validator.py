"""Tests for the request validation state machine."""

import logging
import threading

import pytest
from eth_account import Account
from eth_account.messages import encode_typed_data
from eth_utils import keccak

from eip712_forwarder.auth.signature import SECP256K1_N
from eip712_forwarder.exceptions import (
    DomainConflictError,
    MalformedInputError,
    RegistryCorruptionError,
    RejectionReason,
    TypeConflictError,
)
from eip712_forwarder.models import ValidationState
from eip712_forwarder.relay import FORWARD_REQUEST_FIELDS, RequestBuilder
from eip712_forwarder.relay.request_builder import NEVER_EXPIRES
from eip712_forwarder.utils.structured_logging import (
    clear_correlation_id,
    get_correlation_id,
    set_correlation_id,
)

NOW = 1_700_000_000


@pytest.fixture
def eoa1(accounts):
    return accounts["eoa1"]


@pytest.fixture
def signed(builder, eoa1, approve_calldata, accounts):
    """GasFreeERC20 approve request signed by EOA1, never expiring."""
    key, address = eoa1
    request = builder.build_request(
        address, accounts["forwarder"], nonce=0,
        data=approve_calldata, value=0, gas=21000, valid_until=NEVER_EXPIRES,
    )
    return request, builder.sign(request, key)


def sign_request(builder, key, address, forwarder, **kwargs):
    request = builder.build_request(address, forwarder, **kwargs)
    return request, builder.sign(request, key)


class TestAccepted:
    """Test the happy path."""

    def test_gasfree_scenario(self, validator, signed, eoa1):
        request, signature = signed
        result = validator.validate(request, signature, current_time=NOW)

        assert result.accepted
        assert result.state == ValidationState.ACCEPTED
        assert result.reason is None
        assert result.signer == eoa1[1]
        assert result.nonce == 0

    def test_digest_matches_eth_account(self, validator, signed):
        request, signature = signed
        result = validator.validate(request, signature, current_time=NOW)

        signable = encode_typed_data(full_message=request.to_wire())
        expected = keccak(b"\x19" + signable.version + signable.header + signable.body)
        assert result.digest == "0x" + expected.hex()
        assert Account.recover_message(signable, signature=signature) == result.signer

    def test_wire_dict_and_hex_signature(self, validator, signed):
        request, signature = signed
        result = validator.validate(request.to_wire(), "0x" + signature.hex(), current_time=NOW)
        assert result.accepted

    def test_without_types(self, validator, signed):
        """Registered types are authoritative; wire types are optional."""
        request, signature = signed
        wire = request.to_wire()
        del wire["types"]
        assert validator.validate(wire, signature, current_time=NOW).accepted

    def test_next_nonce_advances(self, validator, signed, eoa1):
        request, signature = signed
        assert validator.next_nonce(eoa1[1]) == 0
        validator.validate(request, signature, current_time=NOW)
        assert validator.next_nonce(eoa1[1]) == 1
        assert validator.next_nonce(eoa1[1].lower()) == 1

    def test_zero_valid_until_never_expires(self, make_validator, builder, eoa1, accounts):
        key, address = eoa1
        request, signature = sign_request(
            builder, key, address, accounts["forwarder"], nonce=0, valid_until=0
        )

        strict = make_validator()
        lenient = make_validator(zero_valid_until_never_expires=True)

        assert strict.validate(request, signature, current_time=NOW).reason == RejectionReason.EXPIRED
        assert lenient.validate(request, signature, current_time=NOW).accepted

    def test_valid_until_equal_to_now(self, validator, builder, eoa1, accounts):
        key, address = eoa1
        request, signature = sign_request(
            builder, key, address, accounts["forwarder"], nonce=0, valid_until=NOW
        )
        assert validator.validate(request, signature, current_time=NOW).accepted

    def test_zero_one_v_policy(self, make_validator, signed):
        request, signature = signed
        raw_v = signature[:64] + bytes([signature[64] - 27])

        assert make_validator().validate(
            request, raw_v, current_time=NOW
        ).reason == RejectionReason.INVALID_RECOVERY_ID
        assert make_validator(allow_zero_one_v=True).validate(
            request, raw_v, current_time=NOW
        ).accepted


class TestRejected:
    """Every rejection reason, with the state reached before it."""

    def test_replay(self, validator, signed):
        request, signature = signed
        assert validator.validate(request, signature, current_time=NOW).accepted

        second = validator.validate(request, signature, current_time=NOW)
        assert not second.accepted
        assert second.rejected
        assert second.reason == RejectionReason.REPLAY
        assert second.state == ValidationState.SIGNATURE_VERIFIED

    def test_expired(self, validator, builder, eoa1, accounts):
        key, address = eoa1
        request, signature = sign_request(
            builder, key, address, accounts["forwarder"], nonce=0, valid_until=NOW - 1
        )
        result = validator.validate(request, signature, current_time=NOW)

        assert result.reason == RejectionReason.EXPIRED
        assert result.state == ValidationState.NONCE_CHECKED
        # Nonce stays usable after an expired rejection
        assert validator.next_nonce(address) == 0
        assert validator.validate(request, signature, current_time=NOW - 10).accepted

    def test_signature_mismatch(self, validator, builder, eoa1, accounts):
        _, address = eoa1
        eoa2_key, _ = accounts["eoa2"]
        request, signature = sign_request(
            builder, eoa2_key, address, accounts["forwarder"], nonce=0, valid_until=NEVER_EXPIRES
        )
        result = validator.validate(request, signature, current_time=NOW)

        assert result.reason == RejectionReason.SIGNATURE_MISMATCH
        assert result.state == ValidationState.DIGEST_COMPUTED
        assert result.signer is None

    @pytest.mark.parametrize("field,value", [
        ("value", 1),
        ("gas", 21001),
        ("nonce", 1),
        ("data", "0x"),
        ("validUntil", NEVER_EXPIRES - 1),
        ("to", "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"),
    ])
    def test_tampered_message(self, validator, signed, field, value):
        request, signature = signed
        wire = request.to_wire()
        wire["message"][field] = value

        result = validator.validate(wire, signature, current_time=NOW)
        assert result.reason == RejectionReason.SIGNATURE_MISMATCH

    def test_tampered_domain_is_unknown(self, validator, signed):
        request, signature = signed
        wire = request.to_wire()
        wire["domain"]["chainId"] = 1

        result = validator.validate(wire, signature, current_time=NOW)
        assert result.reason == RejectionReason.UNKNOWN_DOMAIN
        assert result.state == ValidationState.RECEIVED

    def test_unknown_type(self, validator, signed):
        request, signature = signed
        wire = request.to_wire()
        wire["primaryType"] = "Permit"
        del wire["types"]

        result = validator.validate(wire, signature, current_time=NOW)
        assert result.reason == RejectionReason.UNKNOWN_TYPE
        assert result.state == ValidationState.DOMAIN_RESOLVED

    def test_unregistered_nested_type(self, validator, gasfree_domain, eoa1, accounts):
        key, address = eoa1
        fields = [("from", "address"), ("nonce", "uint256"),
                  ("validUntil", "uint256"), ("item", "Item")]
        validator.register_request_type("Order", fields)

        builder = RequestBuilder(
            gasfree_domain, type_name="Order", fields=fields,
            struct_types={"Item": [("sku", "string")]},
        )
        request = builder.build_message({
            "from": address, "nonce": 0, "validUntil": NEVER_EXPIRES, "item": {"sku": "A1"},
        })
        signature = builder.sign(request, key)

        result = validator.validate(request, signature, current_time=NOW)
        assert result.reason == RejectionReason.UNKNOWN_TYPE

        validator.register_struct_type("Item", [("sku", "string")])
        assert validator.validate(request, signature, current_time=NOW).accepted

    def test_domain_type_conflict(self, validator, signed):
        """A declared EIP712Domain with other fields than the domain is rejected."""
        request, signature = signed
        wire = request.to_wire()
        wire["types"]["EIP712Domain"] = wire["types"]["EIP712Domain"][:2]

        result = validator.validate(wire, signature, current_time=NOW)
        assert result.reason == RejectionReason.TYPE_CONFLICT
        assert result.state == ValidationState.DOMAIN_RESOLVED

        del wire["types"]["EIP712Domain"]
        assert validator.validate(wire, signature, current_time=NOW).accepted

    def test_type_conflict(self, validator, signed):
        """Wire types describing a different ForwardRequest are rejected."""
        request, signature = signed
        wire = request.to_wire()
        wire["types"]["ForwardRequest"] = list(reversed(wire["types"]["ForwardRequest"]))

        result = validator.validate(wire, signature, current_time=NOW)
        assert result.reason == RejectionReason.TYPE_CONFLICT
        assert result.state == ValidationState.DOMAIN_RESOLVED

    def test_wire_types_missing_primary(self, validator, signed):
        request, signature = signed
        wire = request.to_wire()
        wire["types"] = {"Other": [{"name": "x", "type": "uint256"}]}

        result = validator.validate(wire, signature, current_time=NOW)
        assert result.reason == RejectionReason.TYPE_CONFLICT

    def test_missing_field(self, validator, signed):
        request, signature = signed
        wire = request.to_wire()
        del wire["message"]["gas"]

        result = validator.validate(wire, signature, current_time=NOW)
        assert result.reason == RejectionReason.MISSING_FIELD
        assert result.state == ValidationState.TYPE_RESOLVED

    def test_type_mismatch(self, validator, signed):
        request, signature = signed
        wire = request.to_wire()
        wire["message"]["gas"] = [21000]

        result = validator.validate(wire, signature, current_time=NOW)
        assert result.reason == RejectionReason.TYPE_MISMATCH

    @pytest.mark.parametrize("bad_request", [
        None,
        "request",
        {"domain": {"name": "GasFreeERC20"}},
        {"domain": "x", "primaryType": "ForwardRequest", "message": {}},
    ])
    def test_malformed_request(self, validator, signed, bad_request):
        _, signature = signed
        result = validator.validate(bad_request, signature, current_time=NOW)

        assert result.reason == RejectionReason.MALFORMED_INPUT
        assert result.state == ValidationState.RECEIVED

    def test_invalid_signature_length(self, validator, signed):
        request, signature = signed
        result = validator.validate(request, signature[:64], current_time=NOW)

        assert result.reason == RejectionReason.INVALID_SIGNATURE_LENGTH
        assert result.state == ValidationState.DIGEST_COMPUTED
        assert result.digest is not None

    def test_invalid_recovery_id(self, validator, signed):
        request, signature = signed
        result = validator.validate(request, signature[:64] + b"\x1d", current_time=NOW)
        assert result.reason == RejectionReason.INVALID_RECOVERY_ID

    def test_recovery_failed(self, validator, signed):
        request, signature = signed
        zero_r = b"\x00" * 32 + signature[32:]
        result = validator.validate(request, zero_r, current_time=NOW)
        assert result.reason == RejectionReason.RECOVERY_FAILED

    def test_malleable_signature(self, make_validator, signed):
        request, signature = signed
        s = int.from_bytes(signature[32:64], "big")
        twin = signature[:32] + (SECP256K1_N - s).to_bytes(32, "big") + bytes([55 - signature[64]])

        result = make_validator().validate(request, twin, current_time=NOW)
        assert result.reason == RejectionReason.MALLEABLE_SIGNATURE

        assert make_validator(enforce_low_s=False).validate(request, twin, current_time=NOW).accepted

    def test_nonce_out_of_order(self, make_validator, builder, eoa1, accounts):
        key, address = eoa1
        validator = make_validator(nonce_policy="sequential")

        ahead, ahead_sig = sign_request(
            builder, key, address, accounts["forwarder"], nonce=1, valid_until=NEVER_EXPIRES
        )
        first, first_sig = sign_request(
            builder, key, address, accounts["forwarder"], nonce=0, valid_until=NEVER_EXPIRES
        )

        result = validator.validate(ahead, ahead_sig, current_time=NOW)
        assert result.reason == RejectionReason.NONCE_OUT_OF_ORDER
        assert result.state == ValidationState.SIGNATURE_VERIFIED

        assert validator.validate(first, first_sig, current_time=NOW).accepted
        assert validator.validate(ahead, ahead_sig, current_time=NOW).accepted
        assert validator.validate(first, first_sig, current_time=NOW).reason == RejectionReason.REPLAY

    def test_registry_corruption_is_fatal(self, validator, signed, monkeypatch, caplog):
        request, signature = signed

        def corrupted(*args, **kwargs):
            raise RegistryCorruptionError("cached type hash inconsistent")

        monkeypatch.setattr(validator._hasher, "struct_hash", corrupted)
        with caplog.at_level(logging.ERROR, logger="eip712_forwarder.relay.validator"):
            with pytest.raises(RegistryCorruptionError):
                validator.validate(request, signature, current_time=NOW)

        record = next(
            r for r in caplog.records
            if getattr(r, "extra_fields", {}).get("event") == "registry_corrupted"
        )
        assert record.exc_info is not None
        assert record.exc_info[0] is RegistryCorruptionError


class TestRegistration:
    """Test administrative entry points."""

    def test_domain_idempotent(self, validator, gasfree_domain):
        first = validator.register_domain_separator("gasfree", gasfree_domain)
        again = validator.register_domain_separator("gasfree", dict(gasfree_domain))
        assert first == again
        assert validator.get_domain("gasfree").chain_id == 31337

    def test_domain_id_conflict(self, validator, gasfree_domain):
        with pytest.raises(DomainConflictError) as exc_info:
            validator.register_domain_separator("gasfree", dict(gasfree_domain, chainId=1))
        assert exc_info.value.domain_id == "gasfree"

    def test_domain_bound_to_other_id(self, validator, gasfree_domain):
        with pytest.raises(DomainConflictError):
            validator.register_domain_separator("alias", gasfree_domain)

    def test_invalid_domain(self, validator):
        with pytest.raises(MalformedInputError):
            validator.register_domain_separator("bad", {"chainId": "nope"})
        with pytest.raises(MalformedInputError):
            validator.register_domain_separator("", {"name": "x"})

    def test_second_domain(self, validator, gasfree_domain, accounts):
        """Requests are routed by domain separator."""
        mainnet = dict(gasfree_domain, chainId=1)
        validator.register_domain_separator("mainnet", mainnet)

        key, address = accounts["eoa1"]
        builder = RequestBuilder(mainnet)
        request, signature = sign_request(
            builder, key, address, accounts["forwarder"], nonce=0, valid_until=NEVER_EXPIRES
        )
        assert validator.validate(request, signature, current_time=NOW).accepted

    def test_request_type_idempotent(self, validator):
        validator.register_request_type("ForwardRequest", FORWARD_REQUEST_FIELDS)
        assert validator.request_types() == ["ForwardRequest"]

    def test_request_type_conflict(self, validator):
        with pytest.raises(TypeConflictError):
            validator.register_request_type(
                "ForwardRequest",
                [("from", "address"), ("nonce", "uint256"), ("validUntil", "uint256")],
            )

    @pytest.mark.parametrize("fields", [
        [("nonce", "uint256"), ("validUntil", "uint256")],
        [("from", "address"), ("validUntil", "uint256")],
        [("from", "address"), ("nonce", "uint256")],
        [("from", "string"), ("nonce", "uint256"), ("validUntil", "uint256")],
        [("from", "address"), ("nonce", "int256"), ("validUntil", "uint256")],
        [("from", "address"), ("nonce", "uint256"), ("validUntil", "uint256[]")],
    ])
    def test_request_type_requires_generic_fields(self, validator, fields):
        with pytest.raises(MalformedInputError):
            validator.register_request_type("Meta", fields)
        assert "Meta" not in validator.registry

    def test_struct_type_is_not_a_request_type(self, validator):
        validator.register_struct_type("Item", [("sku", "string")])
        assert validator.request_types() == ["ForwardRequest"]


class TestIntegrity:
    """Test registry corruption detection."""

    def test_clean(self, validator, signed):
        request, signature = signed
        validator.validate(request, signature, current_time=NOW)
        validator.verify_integrity()

    def test_corrupted_type_hash(self, validator, signed):
        request, signature = signed
        validator.validate(request, signature, current_time=NOW)
        validator.registry._type_hashes["ForwardRequest"] = b"\x00" * 32

        with pytest.raises(RegistryCorruptionError):
            validator.verify_integrity()

    def test_corrupted_domain_table(self, validator):
        separator = next(iter(validator._separators))
        validator._separators = {b"\x00" * 32: validator._separators[separator]}

        with pytest.raises(RegistryCorruptionError):
            validator.verify_integrity()


def test_concurrent_validation_accepts_once(validator, signed):
    """
    CRITICAL: one signed request validated from 50 threads is accepted once.
    """
    request, signature = signed
    results = []
    lock = threading.Lock()
    barrier = threading.Barrier(50)

    def validate():
        barrier.wait()
        result = validator.validate(request, signature, current_time=NOW)
        with lock:
            results.append(result)

    threads = [threading.Thread(target=validate) for _ in range(50)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    accepted = [r for r in results if r.accepted]
    assert len(accepted) == 1
    assert all(r.reason == RejectionReason.REPLAY for r in results if not r.accepted)


def test_metrics_recorded(validator, signed):
    request, signature = signed
    validator.validate(request, signature, current_time=NOW)
    validator.validate(request, signature, current_time=NOW)
    validator.validate(request, signature[:10], current_time=NOW)

    assert validator.metrics.validation_count("accepted", "none") == 1
    assert validator.metrics.validation_count("rejected", "replay") == 1
    assert validator.metrics.validation_count("rejected", "invalid_signature_length") == 1


def test_independent_validators(make_validator, signed):
    """Validators share no state: each accepts the same request once."""
    request, signature = signed
    assert make_validator().validate(request, signature, current_time=NOW).accepted
    assert make_validator().validate(request, signature, current_time=NOW).accepted


class TestCorrelation:
    """Test correlation ids on results and log records."""

    def test_generated_per_validation(self, validator, signed, caplog):
        request, signature = signed
        with caplog.at_level(logging.INFO, logger="eip712_forwarder.relay.validator"):
            first = validator.validate(request, signature, current_time=NOW)
            second = validator.validate(request, signature, current_time=NOW)

        assert first.correlation_id.startswith("req_")
        assert second.correlation_id.startswith("req_")
        assert first.correlation_id != second.correlation_id
        assert get_correlation_id() is None

        events = {r.extra_fields["event"]: r for r in caplog.records if hasattr(r, "extra_fields")}
        assert events["request_accepted"].levelno == logging.INFO
        assert events["request_rejected"].levelno == logging.WARNING

    def test_caller_id_reused(self, validator, signed):
        request, signature = signed
        set_correlation_id("req_relay42")
        try:
            result = validator.validate(request, signature, current_time=NOW)
            assert result.correlation_id == "req_relay42"
            assert get_correlation_id() == "req_relay42"
        finally:
            clear_correlation_id()
