import pytest
from hypothesis import given, strategies as st

from simdash.services.addressing import (
    format_simulator_url,
    looks_like_network_address,
    provisional_simulator_id,
)

hosts = st.from_regex(r"[a-z][a-z0-9-]{0,10}(\.[a-z0-9-]{1,6}){0,2}", fullmatch=True)
ports = st.integers(min_value=1, max_value=65535)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("10.0.0.5:8080", "http://10.0.0.5:8080"),
        ("  http://sim-a:9000/ ", "http://sim-a:9000"),
        ("https://sim.example.com//", "https://sim.example.com"),
    ],
)
def test_format_simulator_url(raw, expected):
    assert format_simulator_url(raw) == expected


def test_format_simulator_url_rejects_blank():
    with pytest.raises(ValueError):
        format_simulator_url("  ")


@given(hosts, ports)
def test_format_is_idempotent(host, port):
    once = format_simulator_url(f"{host}:{port}/")
    assert format_simulator_url(once) == once
    assert once.startswith("http://")


@given(hosts, ports)
def test_provisional_id_is_host_and_port(host, port):
    assert provisional_simulator_id(f"http://{host}:{port}") == f"{host}:{port}"
    assert provisional_simulator_id(f"{host}:{port}/api") == f"{host}:{port}"


def test_provisional_id_drops_credentials():
    assert provisional_simulator_id("http://user:pw@Sim-A:9000") == "sim-a:9000"


@given(st.ip_addresses(v=4), st.one_of(st.none(), ports))
def test_ipv4_addresses_look_like_network_addresses(address, port):
    value = str(address) if port is None else f"{address}:{port}"
    assert looks_like_network_address(value)


@pytest.mark.parametrize("value", ["localhost", "localhost:8080", "[::1]:8080", "::1", "fe80::1"])
def test_other_network_addresses(value):
    assert looks_like_network_address(value)


@pytest.mark.parametrize(
    "value",
    [None, "", "uuid-7", "3f2b6c1e-6f6a-4c1b-9a55-0d5c1c2b7f10", "kitchen:sim", "sim.example.com"],
)
def test_canonical_ids_are_not_network_addresses(value):
    assert not looks_like_network_address(value)
