"""CustomResourceDefinition for the ``Build`` resource."""

from __future__ import annotations

from typing import Any

from kairos.core.constants import (
    API_GROUP,
    API_VERSION,
    BUILD_KIND,
    BUILD_PLURAL,
    DEFAULT_DOCKERFILE_PATH,
    DEFAULT_REVISION,
    BuildPhase,
    CallbackStatus,
)


def _string(description: str, **extra: Any) -> dict[str, Any]:
    return {"type": "string", "description": description, **extra}


def build_schema() -> dict[str, Any]:
    """OpenAPI v3 schema of a Build object (spec and status)."""
    callback = {
        "type": "object",
        "description": "Webhook called once the build finishes.",
        "required": ["url"],
        "properties": {
            "url": _string("URL receiving the completion POST."),
            "authToken": _string("Sent as a Bearer token when set."),
        },
    }
    spec = {
        "type": "object",
        "required": ["contextUrl", "outputImage"],
        "properties": {
            "contextUrl": _string("Git repository holding the build context.", minLength=1),
            "revision": _string(
                "Branch, tag or commit to build.", default=DEFAULT_REVISION
            ),
            "dockerfilePath": _string(
                "Dockerfile path inside the context.", default=DEFAULT_DOCKERFILE_PATH
            ),
            "outputImage": _string(
                "Image reference to push, e.g. registry.example.com/team/app:tag.",
                minLength=1,
            ),
            "pushCredentialRef": _string(
                "Name of the secret holding registry credentials (.dockerconfigjson)."
            ),
            "callback": callback,
        },
    }
    status = {
        "type": "object",
        "properties": {
            "phase": _string("Build phase.", enum=[p.value for p in BuildPhase]),
            "jobRef": _string("Name of the execution job."),
            "callbackStatus": _string(
                "Outcome of the completion callback.",
                enum=[s.value for s in CallbackStatus if s.value],
            ),
            "completionTime": _string("When the build finished.", format="date-time"),
        },
    }
    return {
        "type": "object",
        "properties": {
            "apiVersion": {"type": "string"},
            "kind": {"type": "string"},
            "metadata": {"type": "object"},
            "spec": spec,
            "status": status,
        },
    }


def build_crd() -> dict[str, Any]:
    """The ``builds.<group>`` CustomResourceDefinition document."""
    return {
        "apiVersion": "apiextensions.k8s.io/v1",
        "kind": "CustomResourceDefinition",
        "metadata": {"name": f"{BUILD_PLURAL}.{API_GROUP}"},
        "spec": {
            "group": API_GROUP,
            "scope": "Namespaced",
            "names": {
                "kind": BUILD_KIND,
                "listKind": f"{BUILD_KIND}List",
                "plural": BUILD_PLURAL,
                "singular": BUILD_KIND.lower(),
            },
            "versions": [
                {
                    "name": API_VERSION,
                    "served": True,
                    "storage": True,
                    "subresources": {"status": {}},
                    "schema": {"openAPIV3Schema": build_schema()},
                    "additionalPrinterColumns": [
                        {"name": "Phase", "type": "string", "jsonPath": ".status.phase"},
                        {"name": "Job", "type": "string", "jsonPath": ".status.jobRef"},
                        {
                            "name": "Age",
                            "type": "date",
                            "jsonPath": ".metadata.creationTimestamp",
                        },
                    ],
                }
            ],
        },
    }
