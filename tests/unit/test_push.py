"""
Unit tests for the push helpers.
"""

import logging
import os

import pytest

from httppush.http.response import PushRejected, ResponseWriter
from httppush.push import (
    PathResolutionError,
    PushError,
    PushFailedError,
    PushUnsupportedError,
    normalize_path,
    probe,
    push_files,
)


def cwd_deleted():
    raise FileNotFoundError(2, "No such file or directory")


class TestProbe:

    def test_push_writer_supports_push(self, push_writer):
        assert probe(push_writer) is True

    def test_basic_writer_does_not(self, basic_writer):
        assert probe(basic_writer) is False

    def test_logs_once_at_debug(self, push_writer, caplog):
        with caplog.at_level(logging.DEBUG, logger="httppush.push"):
            probe(push_writer)

        messages = [r.getMessage() for r in caplog.records if r.name == "httppush.push"]
        assert messages == ["push supported"]

    def test_logs_not_supported(self, basic_writer, caplog):
        with caplog.at_level(logging.DEBUG, logger="httppush.push"):
            probe(basic_writer)

        assert "push not supported" in caplog.text

    def test_does_not_touch_the_response(self, push_writer):
        probe(push_writer)

        assert push_writer.committed is False
        assert push_writer.finish().body == b""


class TestNormalizePath:

    def test_relative_resolved_against_cwd(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)

        assert normalize_path("css/app.css") == os.path.join(os.getcwd(), "css", "app.css")

    def test_cleans_dot_segments(self):
        assert normalize_path("/srv/site/./css/../app.css") == "/srv/site/app.css"

    def test_idempotent_on_normalized_absolute_path(self):
        path = normalize_path("/srv/site/app.css")
        assert normalize_path(path) == path

    def test_missing_working_directory(self, monkeypatch):
        monkeypatch.setattr(os, "getcwd", cwd_deleted)

        with pytest.raises(PathResolutionError) as exc_info:
            normalize_path("relative.css")

        assert exc_info.value.file_ref == "relative.css"
        assert isinstance(exc_info.value.__cause__, FileNotFoundError)

    def test_absolute_path_needs_no_working_directory(self, monkeypatch):
        monkeypatch.setattr(os, "getcwd", cwd_deleted)

        assert normalize_path("/srv/app.css") == "/srv/app.css"

    def test_null_byte_rejected(self):
        with pytest.raises(PathResolutionError):
            normalize_path("bad\x00name.css")

    def test_non_path_rejected(self):
        with pytest.raises(PathResolutionError):
            normalize_path(42)


class TestPushFiles:

    def test_unsupported_connection(self, basic_writer):
        with pytest.raises(PushUnsupportedError) as exc_info:
            push_files(basic_writer, ["/a.css"])

        assert str(exc_info.value) == "push capability unavailable"

    def test_unsupported_checked_even_for_empty_list(self, basic_writer):
        with pytest.raises(PushUnsupportedError):
            push_files(basic_writer, [])

    def test_empty_list_on_push_connection(self, push_writer, pusher):
        assert push_files(push_writer, []) is None
        assert pusher.attempted == []

    def test_pushes_in_order(self, push_writer, pusher):
        push_files(push_writer, ["/srv/a.css", "/srv/b.js", "/srv/c.png"])

        assert pusher.pushed == ["/srv/a.css", "/srv/b.js", "/srv/c.png"]

    def test_pushes_normalized_targets(self, push_writer, pusher, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)

        push_files(push_writer, ["static/./app.css"])

        assert pusher.pushed == [os.path.join(os.getcwd(), "static", "app.css")]

    def test_stops_at_first_rejection(self, pusher):
        pusher.reject = {"/srv/b.js"}
        writer = ResponseWriter(pusher=pusher, protocol="HTTP/2")

        with pytest.raises(PushFailedError) as exc_info:
            push_files(writer, ["/srv/a.css", "/srv/b.js", "/srv/c.png"])

        error = exc_info.value
        assert pusher.pushed == ["/srv/a.css"]
        assert pusher.attempted == ["/srv/a.css", "/srv/b.js"]
        assert error.file_ref == "/srv/b.js"
        assert error.target == "/srv/b.js"
        assert isinstance(error.__cause__, PushRejected)

    def test_resolution_failure_stops_iteration(self, push_writer, pusher, monkeypatch):
        monkeypatch.setattr(os, "getcwd", cwd_deleted)

        with pytest.raises(PathResolutionError) as exc_info:
            push_files(push_writer, ["/srv/a.css", "relative.css", "/srv/c.png"])

        assert exc_info.value.file_ref == "relative.css"
        assert pusher.pushed == ["/srv/a.css"]

    def test_probe_evaluated_once_per_call(self, push_writer, monkeypatch):
        calls = []
        original = push_writer.supports

        def counting(capability):
            calls.append(capability)
            return original(capability)

        monkeypatch.setattr(push_writer, "supports", counting)

        push_files(push_writer, ["/a", "/b", "/c"])
        assert len(calls) == 1

        push_files(push_writer, ["/d"])
        assert len(calls) == 2

    def test_single_string_rejected(self, push_writer, pusher):
        with pytest.raises(TypeError):
            push_files(push_writer, "/srv/a.css")

        assert pusher.attempted == []

    def test_errors_share_a_base_class(self):
        assert issubclass(PushUnsupportedError, PushError)
        assert issubclass(PathResolutionError, PushError)
        assert issubclass(PushFailedError, PushError)

    def test_debug_log_names_the_target(self, push_writer, caplog):
        with caplog.at_level(logging.DEBUG, logger="httppush.push"):
            push_files(push_writer, ["/srv/a.css"])

        assert "pushing /srv/a.css" in caplog.text
