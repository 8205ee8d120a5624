"""Unit tests for CRD generation."""

import re

import pytest
import yaml

from myapp.crd import build_crd, main, render_crd


class TestBuildCrd:
    """Tests for build_crd."""

    def test_names(self):
        crd = build_crd()
        assert crd["metadata"]["name"] == "myapps.example.com"
        spec = crd["spec"]
        assert spec["group"] == "example.com"
        assert spec["scope"] == "Namespaced"
        assert spec["names"]["kind"] == "MyApp"
        assert spec["names"]["plural"] == "myapps"
        assert spec["names"]["shortNames"] == ["ma"]

    def test_version_has_status_subresource(self):
        (version,) = build_crd()["spec"]["versions"]
        assert version["name"] == "v1"
        assert version["served"] and version["storage"]
        assert version["subresources"] == {"status": {}}

    def test_printer_columns(self):
        (version,) = build_crd()["spec"]["versions"]
        columns = {c["name"]: c["jsonPath"] for c in version["additionalPrinterColumns"]}
        assert columns["State"] == ".status.state"
        assert columns["Age"] == ".metadata.creationTimestamp"

    def test_spec_constraints(self):
        (version,) = build_crd()["spec"]["versions"]
        spec = version["schema"]["openAPIV3Schema"]["properties"]["spec"]
        replicas = spec["properties"]["replicas"]
        assert (replicas["minimum"], replicas["maximum"]) == (1, 100)
        assert spec["properties"]["envVars"]["additionalProperties"] == {"type": "string"}
        assert spec["properties"]["resources"]["required"] == ["cpu", "memory"]

    @pytest.mark.parametrize(
        "image, valid",
        [
            ("nginx:1.21.0", True),
            ("registry.local:5000/team/nginx:2.0", True),
            ("nginx@sha256:0123abcd", True),
            ("nginx:1.21@sha256:0123abcd", True),
            ("nginx", False),
            ("registry.local:5000/nginx", False),
            ("Nginx:1.0", False),
            ("nginx:bad tag", False),
        ],
    )
    def test_image_pattern(self, image, valid):
        (version,) = build_crd()["spec"]["versions"]
        spec = version["schema"]["openAPIV3Schema"]["properties"]["spec"]
        pattern = spec["properties"]["image"]["pattern"]
        assert bool(re.match(pattern, image)) is valid


class TestRender:
    """Tests for YAML output."""

    def test_round_trips_through_yaml(self):
        assert yaml.safe_load(render_crd()) == build_crd()

    def test_main_writes_file(self, tmp_path):
        path = tmp_path / "crd.yaml"
        assert main([str(path)]) == 0
        assert yaml.safe_load(path.read_text())["kind"] == "CustomResourceDefinition"

    def test_main_writes_stdout(self, capsys):
        assert main([]) == 0
        assert "myapps.example.com" in capsys.readouterr().out
