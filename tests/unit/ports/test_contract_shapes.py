import importlib
import inspect

import pytest

# Mapping of module -> (ProtocolName, required_methods: {name: arity})
PROTOCOLS = {
    "tardis_stream.ports.settings_provider": ("SettingsProvider", {"get": 1}),
    "tardis_stream.machine.connection": ("Transport", {"receive": 0, "close": 0}),
}


@pytest.mark.parametrize("module_name,meta", PROTOCOLS.items())
def test_required_protocol_signatures(module_name, meta):
    proto_name, methods = meta
    module = importlib.import_module(module_name)
    proto = getattr(module, proto_name)
    assert inspect.isclass(proto), f"{proto_name} not a class"
    for method_name, arity in methods.items():
        fn = getattr(proto, method_name, None)
        assert fn is not None, f"Missing method {method_name} on {proto_name}"
        sig = inspect.signature(fn)
        # remove self
        params = [p for p in sig.parameters.values() if p.kind == p.POSITIONAL_OR_KEYWORD][1:]
        assert len(params) == arity, f"{proto_name}.{method_name} expected {arity} args got {len(params)}"


def test_env_provider_satisfies_settings_protocol():
    from tardis_stream.adapters.env_provider import EnvSettingsProvider
    from tardis_stream.ports.settings_provider import SettingsProvider

    expected = inspect.signature(SettingsProvider.get)
    actual = inspect.signature(EnvSettingsProvider.get)
    assert list(actual.parameters) == list(expected.parameters)
    assert actual.return_annotation == expected.return_annotation


def test_aiohttp_transport_matches_transport_protocol():
    from tardis_stream.machine.connection import AiohttpTransport

    for name in ("receive", "close"):
        assert inspect.iscoroutinefunction(getattr(AiohttpTransport, name))
    assert isinstance(inspect.getattr_static(AiohttpTransport, "closed"), property)
