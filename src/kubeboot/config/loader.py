# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubeboot/config/loader.py

import logging
import os
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from dotenv import dotenv_values
from pydantic import ValidationError

from ..errors import ConfigurationMissing
from .models import BootstrapConfig

log = logging.getLogger("kubeboot")

NODE_KEYS = {
    "IP": "address",
    "USER": "username",
    "PASSWORD": "password",
    "HOSTNAME": "hostname",
}

# Optional .env keys and the cluster setting each one feeds.
CLUSTER_KEYS = {
    "POD_CIDR": "pod_cidr",
    "KUBERNETES_MINOR_VERSION": "kubernetes_minor_version",
    "JOIN_STRATEGY": "join_strategy",
    "FAILURE_POLICY": "failure_policy",
    "CNI_MANIFEST_URL": "cni_manifest_url",
    "JOIN_ARTIFACT_PATH": "join_artifact_path",
}
REQUIRED_CLUSTER_KEYS = ("POD_CIDR", "KUBERNETES_MINOR_VERSION")


def _deep_merge(base: dict, override: dict) -> dict:
    """
    Recursively merge *override* into *base* (mutates base).
    Only overwrites when the override value is non-empty.
    """
    for key, value in override.items():
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(value, dict)
        ):
            _deep_merge(base[key], value)
        else:
            if value not in (None, ""):
                base[key] = value
    return base


def _find_secrets_file(config_path: Path) -> Optional[Path]:
    """
    Locate secrets.yaml using this priority:

    1. KUBEBOOT_SECRETS_FILE environment variable (explicit override)
    2. secrets.yaml in the same directory as the cluster config
    """
    env = os.environ.get("KUBEBOOT_SECRETS_FILE")
    if env:
        p = Path(env)
        if p.is_file():
            return p
        log.warning("KUBEBOOT_SECRETS_FILE=%s does not exist, skipping", env)
        return None

    p = config_path.parent / "secrets.yaml"
    if p.is_file() and p != config_path:
        return p
    return None


def _load_yaml(path: Path) -> dict:
    """Load a YAML file, expanding ${ENV_VAR} references."""
    raw = path.read_text()
    expanded = os.path.expandvars(raw)
    data = yaml.safe_load(expanded) or {}
    if not isinstance(data, dict):
        raise ConfigurationMissing(f"{path}: top level must be a mapping")
    return data


def _node_indexes(values: Dict[str, Optional[str]]) -> List[int]:
    found = set()
    for key in values:
        if key.startswith("NODE") and "_" in key:
            num = key[4:].split("_", 1)[0]
            if num.isdigit():
                found.add(int(num))
    return sorted(found)


def _load_dotenv(path: Path) -> dict:
    """
    Translate the flat NODE00_IP / NODE00_USER / ... layout into the
    nested structure BootstrapConfig validates. Node 00 is the control plane.
    """
    values = dotenv_values(path)
    missing: List[str] = []

    indexes = _node_indexes(values)
    if not indexes or indexes[0] != 0:
        missing.append("NODE00_IP")
    elif indexes != list(range(len(indexes))):
        raise ConfigurationMissing(
            f"{path}: node numbers must be contiguous from 00, got {indexes}"
        )

    nodes = []
    for i in indexes:
        node = {}
        for suffix, field in NODE_KEYS.items():
            key = f"NODE{i:02d}_{suffix}"
            value = values.get(key)
            if not value:
                missing.append(key)
            node[field] = value
        node["role"] = "control-plane" if i == 0 else "worker"
        nodes.append(node)

    cluster = {}
    for key, field in CLUSTER_KEYS.items():
        value = values.get(key)
        if value:
            cluster[field] = value
        elif key in REQUIRED_CLUSTER_KEYS:
            missing.append(key)

    if missing:
        raise ConfigurationMissing(
            f"{path}: missing required settings: {', '.join(missing)}"
        )
    return {"nodes": nodes, "cluster": cluster}


def load_config(path) -> BootstrapConfig:
    """
    Load and validate the bootstrap settings.

    Two layouts are accepted:

    **YAML** (``*.yaml`` / ``*.yml``)
        ``nodes:`` list plus ``cluster:`` mapping. ``${ENV_VAR}``
        placeholders are expanded and a ``secrets.yaml`` found through
        ``KUBEBOOT_SECRETS_FILE`` or next to the file is deep-merged
        before validation, so passwords can live outside the main file.

    **dotenv** (anything else, typically ``.env``)
        ``NODE00_IP``, ``NODE00_USER``, ``NODE00_PASSWORD``,
        ``NODE00_HOSTNAME`` per node, plus ``POD_CIDR`` and
        ``KUBERNETES_MINOR_VERSION``.

    Raises ConfigurationMissing when the file or a required value is absent
    or fails validation.
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigurationMissing(f"settings file not found: {path}")

    if path.suffix in (".yaml", ".yml"):
        data = _load_yaml(path)
        secrets_path = _find_secrets_file(path)
        if secrets_path:
            log.debug("Merging secrets from %s", secrets_path)
            _deep_merge(data, _load_yaml(secrets_path))
    else:
        data = _load_dotenv(path)

    try:
        return BootstrapConfig.model_validate(data)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ConfigurationMissing(f"{path}: invalid settings: {problems}") from e
