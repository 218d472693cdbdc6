from bitswap.network.interfaces import (
    PROTOCOL_BITSWAP,
    PROTOCOL_BITSWAP_ONE_ONE,
    MessageSenderOpts,
    Settings,
    Stats,
    default_settings,
    prefix,
    supported_protocols,
)


def test_protocol_ids():
    settings = default_settings()
    assert settings.supported_protocols == [
        "/ipfs/bitswap/1.2.0",
        "/ipfs/bitswap/1.1.0",
        "/ipfs/bitswap/1.0.0",
        "/ipfs/bitswap",
    ]


def test_default_settings_lists_all_protocols_newest_first():
    settings = default_settings()
    assert settings.protocol_prefix == ""
    assert settings.supported_protocols[0] == PROTOCOL_BITSWAP
    assert settings.supported_protocols[1] == PROTOCOL_BITSWAP_ONE_ONE
    assert len(settings.supported_protocols) == 4


def test_default_settings_are_independent():
    first = default_settings()
    first.supported_protocols.clear()
    assert len(default_settings().supported_protocols) == 4


def test_prefix_option_sets_prefix():
    settings = default_settings()
    prefix("/test")(settings)
    assert settings.protocol_prefix == "/test"
    assert settings.supported_protocols[0] == PROTOCOL_BITSWAP


def test_supported_protocols_option_replaces_list():
    protocols = [PROTOCOL_BITSWAP_ONE_ONE]
    settings = Settings()
    supported_protocols(protocols)(settings)
    assert settings.supported_protocols == [PROTOCOL_BITSWAP_ONE_ONE]
    settings.supported_protocols.append(PROTOCOL_BITSWAP)
    assert protocols == [PROTOCOL_BITSWAP_ONE_ONE]


def test_options_apply_in_order():
    settings = default_settings()
    for option in (prefix("/a"), prefix("/b")):
        option(settings)
    assert settings.protocol_prefix == "/b"


def test_stats_and_opts_default_to_zero():
    stats = Stats()
    assert (stats.messages_sent, stats.messages_recvd) == (0, 0)
    opts = MessageSenderOpts()
    assert (opts.max_retries, opts.send_timeout, opts.send_error_backoff) == (0, 0.0, 0.0)