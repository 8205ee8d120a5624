"""Generate the MyApp CustomResourceDefinition.

Usage:
    python -m myapp.crd [path]

Writes the CRD as YAML to `path`, or to stdout when no path is given.
"""

import argparse
import sys
from typing import Any, Dict, List, Optional

import yaml

from myapp.admission import IMAGE_PATTERN, MAX_REPLICAS, MIN_REPLICAS
from myapp.types.models.myapp import MyApp


def _spec_schema() -> Dict[str, Any]:
    return {
        "type": "object",
        "required": ["replicas", "image"],
        "properties": {
            "replicas": {
                "type": "integer",
                "minimum": MIN_REPLICAS,
                "maximum": MAX_REPLICAS,
            },
            "image": {
                "type": "string",
                "minLength": 1,
                "pattern": IMAGE_PATTERN,
                "description": "Container image as repository:tag or repository@digest; the tag must not be latest.",
            },
            "envVars": {
                "type": "object",
                "additionalProperties": {"type": "string"},
            },
            "resources": {
                "type": "object",
                "required": ["cpu", "memory"],
                "properties": {
                    "cpu": {"type": "string"},
                    "memory": {"type": "string"},
                },
            },
            "scheduling": {
                "type": "object",
                "properties": {
                    "nodeSelector": {
                        "type": "object",
                        "additionalProperties": {"type": "string"},
                    },
                    "priorityClass": {"type": "string"},
                    "schedulerName": {"type": "string"},
                },
            },
        },
    }


def _status_schema() -> Dict[str, Any]:
    return {
        "type": "object",
        "properties": {
            "state": {"type": "string"},
            "observedGeneration": {"type": "integer", "format": "int64"},
            "lastUpdated": {"type": "string", "format": "date-time"},
            "conditions": {
                "type": "array",
                "items": {
                    "type": "object",
                    "required": ["type", "status"],
                    "properties": {
                        "type": {"type": "string"},
                        "status": {"type": "string", "enum": ["True", "False", "Unknown"]},
                        "reason": {"type": "string"},
                        "message": {"type": "string"},
                        "lastTransitionTime": {"type": "string", "format": "date-time"},
                    },
                },
            },
        },
    }


def _printer_columns() -> List[Dict[str, Any]]:
    return [
        {"name": "Replicas", "type": "integer", "jsonPath": ".spec.replicas"},
        {"name": "Image", "type": "string", "jsonPath": ".spec.image"},
        {"name": "State", "type": "string", "jsonPath": ".status.state"},
        {"name": "Age", "type": "date", "jsonPath": ".metadata.creationTimestamp"},
    ]


def build_crd() -> Dict[str, Any]:
    """CustomResourceDefinition document for MyApp."""
    return {
        "apiVersion": "apiextensions.k8s.io/v1",
        "kind": "CustomResourceDefinition",
        "metadata": {"name": f"{MyApp.PLURAL_NAME}.{MyApp.GROUP_NAME}"},
        "spec": {
            "group": MyApp.GROUP_NAME,
            "scope": "Namespaced",
            "names": {
                "kind": MyApp.KIND,
                "listKind": f"{MyApp.KIND}List",
                "plural": MyApp.PLURAL_NAME,
                "singular": MyApp.KIND.lower(),
                "shortNames": [MyApp.SHORT_NAME],
            },
            "versions": [
                {
                    "name": MyApp.GROUP_VERSION,
                    "served": True,
                    "storage": True,
                    "subresources": {"status": {}},
                    "additionalPrinterColumns": _printer_columns(),
                    "schema": {
                        "openAPIV3Schema": {
                            "type": "object",
                            "properties": {
                                "spec": _spec_schema(),
                                "status": _status_schema(),
                            },
                        }
                    },
                }
            ],
        },
    }


def render_crd() -> str:
    return yaml.dump(build_crd(), sort_keys=False, default_flow_style=False)


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="python -m myapp.crd", description="Write the MyApp CRD as YAML."
    )
    parser.add_argument("path", nargs="?", help="Output file (default: stdout)")
    args = parser.parse_args(argv)

    document = render_crd()
    if args.path:
        with open(args.path, "w") as f:
            f.write(document)
    else:
        sys.stdout.write(document)
    return 0


if __name__ == "__main__":
    sys.exit(main())
