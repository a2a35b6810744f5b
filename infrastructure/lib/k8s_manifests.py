"""
Kubernetes manifests applied to the EKS cluster for the sample application.

Every function returns a plain manifest dict so it can be handed to
``Cluster.add_manifest`` or inspected in tests without a cluster.
"""
import json
from typing import Any, Dict

SAMPLE_APP_NAME = "sample-app"
SAMPLE_APP_LABELS = {"app": SAMPLE_APP_NAME}
SAMPLE_APP_PORT = 8080

MONGODB_PORT = 27017
MONGODB_SERVICE_NAME = "mongodb-external"
SECRET_PROVIDER_CLASS_NAME = "mongodb-secretprovider"
SYNCED_SECRET_NAME = "mongodb-individual-components-synced"
SECRETS_MOUNT_PATH = "/mnt/secrets-store"

Manifest = Dict[str, Any]


def service_account_admin_binding(
    service_account_name: str, service_account_namespace: str
) -> Manifest:
    """Binds a service account to the built-in cluster-admin role."""
    return {
        "apiVersion": "rbac.authorization.k8s.io/v1",
        "kind": "ClusterRoleBinding",
        "metadata": {"name": f"{service_account_name}-cluster-admin-binding"},
        "subjects": [
            {
                "kind": "ServiceAccount",
                "name": service_account_name,
                "namespace": service_account_namespace,
            }
        ],
        "roleRef": {
            "kind": "ClusterRole",
            "name": "cluster-admin",
            "apiGroup": "rbac.authorization.k8s.io",
        },
    }


def secret_provider_class(secret_name: str, namespace: str = "default") -> Manifest:
    """
    Mounts the MongoDB credentials from Secrets Manager through the CSI driver
    and mirrors username and password into a native Kubernetes secret.
    """
    # The AWS provider expects "objects" as a JSON encoded string
    objects = json.dumps(
        [
            {
                "objectName": secret_name,
                "objectType": "secretsmanager",
                "jmesPath": [
                    {"path": "username", "objectAlias": "username"},
                    {"path": "password", "objectAlias": "password"},
                ],
            }
        ]
    )
    return {
        "apiVersion": "secrets-store.csi.x-k8s.io/v1",
        "kind": "SecretProviderClass",
        "metadata": {"name": SECRET_PROVIDER_CLASS_NAME, "namespace": namespace},
        "spec": {
            "provider": "aws",
            "parameters": {"objects": objects},
            "secretObjects": [
                {
                    "secretName": SYNCED_SECRET_NAME,
                    "type": "Opaque",
                    "data": [
                        {"objectName": "username", "key": "username"},
                        {"objectName": "password", "key": "password"},
                    ],
                }
            ],
        },
    }


def external_mongodb_service(host: str, namespace: str = "default") -> Manifest:
    """Gives the MongoDB instance a stable in-cluster DNS name."""
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {"name": MONGODB_SERVICE_NAME, "namespace": namespace},
        "spec": {
            "type": "ExternalName",
            "externalName": host,
            "ports": [
                {
                    "protocol": "TCP",
                    "port": MONGODB_PORT,
                    "targetPort": MONGODB_PORT,
                }
            ],
        },
    }


def alb_ingress_class() -> Manifest:
    return {
        "apiVersion": "networking.k8s.io/v1",
        "kind": "IngressClass",
        "metadata": {
            "labels": {"app.kubernetes.io/name": "LoadBalancerController"},
            "name": "alb",
        },
        "spec": {"controller": "eks.amazonaws.com/alb"},
    }


def sample_app_deployment(
    image: str, service_account_name: str, secret_key: str
) -> Manifest:
    """Runs the sample application with MongoDB credentials from the synced secret."""

    def from_synced_secret(env_name: str, key: str) -> Dict[str, Any]:
        return {
            "name": env_name,
            "valueFrom": {
                "secretKeyRef": {"name": SYNCED_SECRET_NAME, "key": key}
            },
        }

    mongodb_host = (
        f"{MONGODB_SERVICE_NAME}.default.svc.cluster.local:{MONGODB_PORT}"
        "/?authSource=admin"
    )

    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {"name": SAMPLE_APP_NAME},
        "spec": {
            "replicas": 1,
            "selector": {"matchLabels": SAMPLE_APP_LABELS},
            "template": {
                "metadata": {"labels": SAMPLE_APP_LABELS},
                "spec": {
                    "serviceAccountName": service_account_name,
                    "containers": [
                        {
                            "name": SAMPLE_APP_NAME,
                            "image": image,
                            "ports": [{"containerPort": SAMPLE_APP_PORT}],
                            "env": [
                                from_synced_secret("MONGODB_USERNAME", "username"),
                                from_synced_secret("MONGODB_PASSWORD", "password"),
                                {"name": "MONGODB_HOST", "value": mongodb_host},
                                # TODO: move SECRET_KEY into Secrets Manager next to the MongoDB credentials
                                {"name": "SECRET_KEY", "value": secret_key},
                            ],
                            "volumeMounts": [
                                {
                                    "name": "secrets-store-inline",
                                    "mountPath": SECRETS_MOUNT_PATH,
                                    "readOnly": True,
                                }
                            ],
                        }
                    ],
                    "volumes": [
                        {
                            "name": "secrets-store-inline",
                            "csi": {
                                "driver": "secrets-store.csi.k8s.io",
                                "readOnly": True,
                                "volumeAttributes": {
                                    "secretProviderClass": SECRET_PROVIDER_CLASS_NAME
                                },
                            },
                        }
                    ],
                },
            },
        },
    }


def sample_app_service() -> Manifest:
    # NodePort so the ALB can reach the pods
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {"name": f"{SAMPLE_APP_NAME}-service"},
        "spec": {
            "selector": SAMPLE_APP_LABELS,
            "ports": [{"port": 80, "targetPort": SAMPLE_APP_PORT}],
            "type": "NodePort",
        },
    }


def sample_app_ingress() -> Manifest:
    return {
        "apiVersion": "networking.k8s.io/v1",
        "kind": "Ingress",
        "metadata": {
            "name": f"{SAMPLE_APP_NAME}-ingress",
            "annotations": {
                "alb.ingress.kubernetes.io/scheme": "internet-facing",
                "alb.ingress.kubernetes.io/target-type": "ip",
            },
        },
        "spec": {
            "ingressClassName": "alb",
            "rules": [
                {
                    "http": {
                        "paths": [
                            {
                                "path": "/",
                                "pathType": "Prefix",
                                "backend": {
                                    "service": {
                                        "name": f"{SAMPLE_APP_NAME}-service",
                                        "port": {"number": 80},
                                    }
                                },
                            }
                        ]
                    }
                }
            ],
        },
    }
