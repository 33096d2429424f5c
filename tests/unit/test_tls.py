"""
Unit tests for TLS context construction.
"""

import ssl

import pytest

from httppush.config import ConfigNotFoundError, ServerConfig
from httppush.tls import ALPN_PROTOCOLS, build_client_context, build_server_context


class TestServerContext:

    def test_no_key_pair_means_plain_tcp(self):
        assert build_server_context(ServerConfig()) is None

    def test_loads_key_pair(self, tls_config):
        context = build_server_context(tls_config)

        assert isinstance(context, ssl.SSLContext)
        assert context.minimum_version == ssl.TLSVersion.TLSv1_2

    def test_alpn_prefers_h2(self):
        assert ALPN_PROTOCOLS == ["h2", "http/1.1"]

    def test_missing_cert_file(self, tls_config, tmp_path):
        tls_config.cert_file = str(tmp_path / "missing.pem")

        with pytest.raises(ConfigNotFoundError) as exc_info:
            build_server_context(tls_config)

        assert exc_info.value.path == tls_config.cert_file

    def test_only_one_half_configured(self, tls_config):
        tls_config.key_file = None

        with pytest.raises(ConfigNotFoundError):
            build_server_context(tls_config)

    def test_key_that_is_not_a_key(self, tls_config, sample_html):
        tls_config.key_file = sample_html

        with pytest.raises(ssl.SSLError):
            build_server_context(tls_config)


class TestClientContext:

    def test_trusts_root_ca(self, tls_config):
        context = build_client_context(tls_config)

        assert context.verify_mode == ssl.CERT_REQUIRED
        assert context.check_hostname is True

    def test_missing_root_ca(self, tls_config, tmp_path):
        tls_config.root_ca = str(tmp_path / "nope.pem")

        with pytest.raises(ConfigNotFoundError):
            build_client_context(tls_config)

    def test_without_root_ca_uses_system_store(self):
        context = build_client_context(ServerConfig(), alpn_protocols=())
        assert context.verify_mode == ssl.CERT_REQUIRED
