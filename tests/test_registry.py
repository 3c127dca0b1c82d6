"""Tests for the Endpoint Registry."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from pulsesync.endpoints import DEFAULT_ENDPOINTS, Endpoint, EndpointRegistry, load_endpoints


@pytest.fixture
def sample_yaml(tmp_path: Path) -> Path:
    data = {
        "endpoints": [
            {"id": "api", "name": "Main API", "url": "https://api.example.com/health"},
            {"id": "docs", "url": "https://docs.example.com/"},
            {"id": "broken"},
            {"id": "ftp", "url": "ftp://files.example.com"},
        ]
    }
    path = tmp_path / "endpoints.yaml"
    path.write_text(yaml.dump(data), encoding="utf-8")
    return path


class TestLoadEndpoints:
    def test_loads_valid_entries(self, sample_yaml: Path) -> None:
        registry = load_endpoints(sample_yaml)
        assert registry.ids == ("api", "docs")
        assert registry.get("api") == Endpoint("api", "Main API", "https://api.example.com/health")

    def test_name_defaults_to_id(self, sample_yaml: Path) -> None:
        assert load_endpoints(sample_yaml).get("docs").display_name == "docs"

    def test_mapping_format(self, tmp_path: Path) -> None:
        path = tmp_path / "endpoints.yaml"
        path.write_text(
            "endpoints:\n  web:\n    name: Website\n    url: https://example.com/\n",
            encoding="utf-8",
        )
        registry = load_endpoints(path)
        assert registry.get("web").display_name == "Website"

    def test_missing_file_uses_defaults(self, tmp_path: Path) -> None:
        registry = load_endpoints(tmp_path / "nope.yaml")
        assert registry.endpoints == DEFAULT_ENDPOINTS

    def test_invalid_yaml_uses_defaults(self, tmp_path: Path) -> None:
        path = tmp_path / "endpoints.yaml"
        path.write_text("endpoints: [unclosed", encoding="utf-8")
        assert load_endpoints(path).ids == ("moecounter", "chatpulse")

    def test_duplicate_ids_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "endpoints.yaml"
        path.write_text(yaml.dump({"endpoints": [
            {"id": "a", "url": "https://a.example.com"},
            {"id": "a", "url": "https://b.example.com"},
        ]}), encoding="utf-8")
        with pytest.raises(ValueError, match="Duplicate"):
            load_endpoints(path)


class TestEndpointRegistry:
    def test_lookup(self, registry: EndpointRegistry) -> None:
        assert "alpha" in registry
        assert "gamma" not in registry
        assert registry.get(None) is None
        assert registry.get("") is None
        assert len(registry) == 2

    def test_endpoints_are_immutable(self, registry: EndpointRegistry) -> None:
        with pytest.raises(AttributeError):
            registry.endpoints[0].probe_url = "https://evil.test"  # type: ignore[misc]
        assert isinstance(registry.endpoints, tuple)

    def test_to_dict(self, registry: EndpointRegistry) -> None:
        assert registry.to_dict()[0] == {
            "id": "alpha", "name": "Alpha API", "url": "https://alpha.test/health",
        }
