"""
Tests for registry version lookup (cli_supervisor/registry.py).
"""

import io
import json
import urllib.error
from unittest.mock import MagicMock

import pytest

from cli_supervisor.errors import ParseFailure
from cli_supervisor.registry import RegistryClient
from cli_supervisor.versioning import Version, constraint_for


def fake_urlopen(payload):
    """Build an urlopen replacement returning payload (dict, str or bytes)."""
    if isinstance(payload, dict):
        payload = json.dumps(payload)
    if isinstance(payload, str):
        payload = payload.encode("utf-8")

    def urlopen(request, timeout=None):
        return io.BytesIO(payload)

    return MagicMock(side_effect=urlopen)


def release(yanked=False):
    return [{"filename": "pkg.whl", "yanked": yanked}]


METADATA = {
    "info": {"name": "listing-generator", "version": "0.11.2"},
    "releases": {
        "0.9.5": release(),
        "0.10.0": release(),
        "0.10.1": release(),
        "0.10.3": release(),
        "0.10.4": release(yanked=True),
        "0.10.5rc1": release(),
        "0.11.2": release(),
        "not-a-version": release(),
    },
}


class TestRegistryClient:
    """Tests for RegistryClient."""

    def test_url(self):
        """Test JSON API URL construction."""
        client = RegistryClient("listing-generator", base_url="https://pypi.org/pypi/")
        assert client.url == "https://pypi.org/pypi/listing-generator/json"

    def test_request_uses_timeout(self):
        """Test the configured timeout is passed to urlopen."""
        opener = fake_urlopen(METADATA)
        client = RegistryClient("listing-generator", timeout=3.5, urlopen=opener)
        client.fetch_metadata()

        request = opener.call_args[0][0]
        assert request.full_url == "https://pypi.org/pypi/listing-generator/json"
        assert opener.call_args[1]["timeout"] == 3.5

    def test_latest_version(self):
        """Test info.version is the latest version."""
        client = RegistryClient("listing-generator", urlopen=fake_urlopen(METADATA))
        assert client.latest_version() == "0.11.2"

    def test_latest_compatible(self):
        """Test highest stable, non-yanked release inside the range."""
        client = RegistryClient("listing-generator", urlopen=fake_urlopen(METADATA))
        assert client.latest_compatible(constraint_for("0.10.0")) == Version(0, 10, 3)

    def test_latest_compatible_none_in_range(self):
        """Test None when no release matches."""
        client = RegistryClient("listing-generator", urlopen=fake_urlopen(METADATA))
        assert client.latest_compatible(constraint_for("0.12.0")) is None

    def test_latest_compatible_falls_back_to_info(self):
        """Test documents without releases use info.version."""
        data = {"info": {"version": "0.10.7"}}
        client = RegistryClient("listing-generator", urlopen=fake_urlopen(data))
        assert client.latest_compatible(constraint_for("0.10.0")) == Version(0, 10, 7)
        assert client.latest_compatible(constraint_for("0.11.0")) is None


class TestRegistryFailures:
    """Failures degrade to None and never raise."""

    def test_network_error(self):
        """Test URLError yields None."""
        opener = MagicMock(side_effect=urllib.error.URLError("offline"))
        client = RegistryClient("listing-generator", urlopen=opener)
        assert client.latest_version() is None
        assert client.latest_compatible(constraint_for("0.10.0")) is None

    def test_timeout(self):
        """Test socket timeout yields None."""
        opener = MagicMock(side_effect=TimeoutError("timed out"))
        client = RegistryClient("listing-generator", urlopen=opener)
        assert client.latest_compatible(constraint_for("0.10.0")) is None

    def test_malformed_json(self):
        """Test non-JSON body yields None."""
        client = RegistryClient("listing-generator", urlopen=fake_urlopen("<html>oops</html>"))
        assert client.latest_version() is None

    def test_missing_info(self):
        """Test document without info.version yields None."""
        client = RegistryClient("listing-generator", urlopen=fake_urlopen({"releases": {}}))
        assert client.latest_version() is None
        assert client.latest_compatible(constraint_for("0.10.0")) is None

    def test_fetch_metadata_raises_parse_failure(self):
        """Test fetch_metadata reports malformed documents as ParseFailure."""
        client = RegistryClient("listing-generator", urlopen=fake_urlopen("[1, 2, 3]"))
        with pytest.raises(ParseFailure):
            client.fetch_metadata()
