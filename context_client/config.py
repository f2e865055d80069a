"""Configuration loading: JSON file deep-merged over DEFAULTS, secrets from env."""

import copy
import json
import logging
import os

from dotenv import load_dotenv

log = logging.getLogger(__name__)

DEFAULTS = {
    "capture": {
        "intervalMs": 2000,
        "scale": 0.5,
        "hashSize": 8,
    },
    "gate": {
        "changeFraction": 0.10,
        "largeChangeFraction": 0.35,
        "confirmCount": 2,
        "cooldownMs": 12000,
    },
    "classifier": {
        "model": "claude-3-5-haiku-latest",
        "timeoutS": 20,
        "maxTokens": 200,
    },
    "jobs": {
        "pollIntervalS": 5,
        "maxPolls": 36,  # ~3 minutes @5s
        "maxTransportRetries": 2,
        "preferStream": False,
    },
    "generation": {
        "tags": "ambient, lofi",
        "makeInstrumental": True,
        "prompt": None,
    },
    "relay": {
        "url": "http://localhost:18791",
        "enabled": False,
    },
}


def _deep_merge(base: dict, override: dict) -> dict:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(path: str | None) -> dict:
    """Returns DEFAULTS merged with the JSON file at `path` (if any).

    API keys are read from the environment after loading a `.env` file, so
    they never need to live in the JSON config.
    """
    config = copy.deepcopy(DEFAULTS)
    if path:
        if os.path.exists(path):
            with open(path) as f:
                config = _deep_merge(config, json.load(f))
            log.info("config loaded from %s", path)
        else:
            log.warning("config file %s not found, using defaults", path)

    load_dotenv(override=False)
    config.setdefault("secrets", {})
    config["secrets"]["anthropicApiKey"] = os.getenv("ANTHROPIC_API_KEY", "")
    config["secrets"]["sunoApiKey"] = os.getenv("SUNO_API_KEY", "")
    return config
