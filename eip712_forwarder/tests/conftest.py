"""Shared fixtures: the EIP-712 "Ether Mail" example and a local forwarder deployment."""

import pytest
from eth_abi import encode as abi_encode
from eth_utils import function_signature_to_4byte_selector

from eip712_forwarder.config import ForwarderSettings
from eip712_forwarder.metrics import Metrics
from eip712_forwarder.relay import FORWARD_REQUEST_FIELDS, RequestBuilder, RequestValidator


# Well-known local development accounts
EOA1_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
EOA1 = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
EOA2_KEY = "0x59c6995e998f97a5a0044966f0945389dc9e86dae88c7a8412f4603b6b78690d"
EOA2 = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
FORWARDER = "0x5FbDB2315678afecb367f032d93F642f64180aa3"


@pytest.fixture
def accounts():
    return {"eoa1": (EOA1_KEY, EOA1), "eoa2": (EOA2_KEY, EOA2), "forwarder": FORWARDER}


@pytest.fixture
def mail_types():
    return {
        "Person": [
            {"name": "name", "type": "string"},
            {"name": "wallet", "type": "address"},
        ],
        "Mail": [
            {"name": "from", "type": "Person"},
            {"name": "to", "type": "Person"},
            {"name": "contents", "type": "string"},
        ],
    }


@pytest.fixture
def mail_domain():
    return {
        "name": "Ether Mail",
        "version": "1",
        "chainId": 1,
        "verifyingContract": "0xCcCCccccCCCCcCCCCCCcCcCccCcCCCcCcccccccC",
    }


@pytest.fixture
def mail_message():
    return {
        "from": {"name": "Cow", "wallet": "0xCD2a3d9F938E13CD947Ec05AbC7FE734Df8DD826"},
        "to": {"name": "Bob", "wallet": "0xbBbBBBBbbBBBbbbBbbBbbbbBBbBbbbbBbBbbBBbB"},
        "contents": "Hello, Bob!",
    }


@pytest.fixture
def mail_request(mail_types, mail_domain, mail_message):
    """Complete wire request, as passed to eth_signTypedData."""
    types = {
        "EIP712Domain": [
            {"name": "name", "type": "string"},
            {"name": "version", "type": "string"},
            {"name": "chainId", "type": "uint256"},
            {"name": "verifyingContract", "type": "address"},
        ],
    }
    types.update(mail_types)
    return {
        "types": types,
        "primaryType": "Mail",
        "domain": mail_domain,
        "message": mail_message,
    }


@pytest.fixture
def gasfree_domain():
    return {
        "name": "GasFreeERC20",
        "version": "1",
        "chainId": 31337,
        "verifyingContract": FORWARDER,
    }


@pytest.fixture
def approve_calldata():
    """approve(EOA2, 100 tokens) call data."""
    selector = function_signature_to_4byte_selector("approve(address,uint256)")
    return selector + abi_encode(["address", "uint256"], [EOA2, 100 * 10**18])


@pytest.fixture
def settings():
    return ForwarderSettings(_env_file=None)


@pytest.fixture
def make_validator(gasfree_domain):
    """Factory for validators with the forwarder domain and ForwardRequest registered."""
    def factory(**overrides):
        validator = RequestValidator(
            settings=ForwarderSettings(_env_file=None, **overrides),
            metrics=Metrics(enabled=True),
        )
        validator.register_domain_separator("gasfree", gasfree_domain)
        validator.register_request_type("ForwardRequest", FORWARD_REQUEST_FIELDS)
        return validator
    return factory


@pytest.fixture
def validator(make_validator):
    return make_validator()


@pytest.fixture
def builder(gasfree_domain):
    return RequestBuilder(gasfree_domain)
