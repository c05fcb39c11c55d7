"""Configuration loading, validation, and defaults."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

import yaml

from .types import (
    RelayConfig,
    ScrollConfig,
    ServerConfig,
    StorageConfig,
    SurveyConfig,
    SurveyFlowConfig,
    TransportConfig,
)

CONFIG_FILENAMES = [
    "survey-flow.yaml",
    "survey-flow.yml",
    "survey-flow.json",
    "surveyflow.yaml",
    "surveyflow.yml",
    "surveyflow.json",
]

STORAGE_BACKENDS = ("memory", "filesystem", "sqlite")


def _discover_config() -> Path | None:
    """Search CWD then parent dirs up to home for a config file."""
    cwd = Path.cwd()
    home = Path.home()
    search = cwd
    while True:
        for name in CONFIG_FILENAMES:
            candidate = search / name
            if candidate.is_file():
                return candidate
        if search == home or search == search.parent:
            break
        search = search.parent
    return None


def _parse_question_sets(raw: Any) -> dict[str, int]:
    # Accept either {"name": count} or [{"name": ..., "count": ...}]
    if isinstance(raw, dict):
        return {str(k): int(v) for k, v in raw.items()}
    sets: dict[str, int] = {}
    for item in raw or []:
        if isinstance(item, dict) and "name" in item:
            sets[str(item["name"])] = int(item.get("count", 0))
    return sets


def _build_config(raw: dict[str, Any]) -> SurveyFlowConfig:
    """Build a SurveyFlowConfig from a raw dict."""
    survey_raw = raw.get("survey", {})
    survey = SurveyConfig(
        total_steps=survey_raw.get("total_steps", 9),
        agent_step=survey_raw.get("agent_step", 4),
        email_collection=survey_raw.get("email_collection", True),
        textarea_replacement=survey_raw.get("textarea_replacement", True),
        likert_questions=list(survey_raw.get("likert_questions", [])),
        extra_text_fields=list(survey_raw.get("extra_text_fields", [])),
        question_sets=_parse_question_sets(survey_raw.get("question_sets", {})),
    )

    transport_raw = raw.get("transport", {})
    transport = TransportConfig(
        retry_delay_s=transport_raw.get("retry_delay_s", 0.5),
        submit_attempts=transport_raw.get("submit_attempts", 4),
        send_attempts=transport_raw.get("send_attempts", 3),
        poll_attempts=transport_raw.get("poll_attempts", 1),
        metadata_attempts=transport_raw.get("metadata_attempts", 3),
    )

    scroll_raw = raw.get("scroll", {})
    scroll = ScrollConfig(
        settle_delay_s=scroll_raw.get("settle_delay_s", 0.05),
        frame_interval_s=scroll_raw.get("frame_interval_s", 1 / 60),
    )

    relay_raw = raw.get("relay", {})
    relay = RelayConfig(
        direct_line_base=relay_raw.get(
            "direct_line_base", "https://europe.directline.botframework.com/v3/directline",
        ),
        direct_line_secret=relay_raw.get("direct_line_secret") or os.environ.get("DIRECT_LINE_SECRET", ""),
        user_id=relay_raw.get("user_id", "user1"),
        bot_id=relay_raw.get("bot_id", "Test_Chatbot_1"),
        dedup_retention_s=relay_raw.get("dedup_retention_s", 3600.0),
        sweep_interval_s=relay_raw.get("sweep_interval_s", 3600.0),
        poll_interval_s=relay_raw.get("poll_interval_s", 1.0),
        timeout_s=relay_raw.get("timeout_s", 30.0),
    )

    server_raw = raw.get("server", {})
    host = server_raw.get("host", "127.0.0.1")
    port = server_raw.get("port", 3000)
    server = ServerConfig(
        host=host,
        port=port,
        base_url=server_raw.get("base_url", f"http://{host}:{port}"),
        random_treatment=server_raw.get("random_treatment", True),
        treatment_fallback=server_raw.get("treatment_fallback", 1),
        database_path=server_raw.get("database_path", ".survey-flow/responses.db"),
    )

    storage_raw = raw.get("storage", {})
    storage = StorageConfig(
        backend=storage_raw.get("backend", "filesystem"),
        root=storage_raw.get("root", ".survey-flow/sessions"),
        sqlite_path=storage_raw.get("sqlite_path", ".survey-flow/sessions.db"),
    )

    return SurveyFlowConfig(
        version=str(raw.get("version", "1.0")),
        survey=survey,
        transport=transport,
        scroll=scroll,
        relay=relay,
        server=server,
        storage=storage,
    )


def validate_config(config: SurveyFlowConfig) -> list[str]:
    """Validate a config. Returns list of error strings (empty = valid)."""
    errors: list[str] = []
    survey = config.survey

    if survey.total_steps < 2:
        errors.append(f"total_steps ({survey.total_steps}) must be >= 2")

    if not 1 < survey.agent_step < survey.total_steps:
        errors.append(
            f"agent_step ({survey.agent_step}) must lie strictly between "
            f"1 and total_steps ({survey.total_steps})"
        )

    duplicates = set(survey.likert_questions) & set(survey.extra_text_fields)
    if duplicates:
        errors.append(f"Fields listed as both likert and text: {', '.join(sorted(duplicates))}")

    for name, count in survey.question_sets.items():
        if count < 0:
            errors.append(f"question set '{name}' has negative count {count}")

    for label, attempts in (
        ("submit_attempts", config.transport.submit_attempts),
        ("send_attempts", config.transport.send_attempts),
        ("poll_attempts", config.transport.poll_attempts),
        ("metadata_attempts", config.transport.metadata_attempts),
    ):
        if attempts < 1:
            errors.append(f"transport.{label} must be >= 1")

    if config.transport.retry_delay_s < 0:
        errors.append("transport.retry_delay_s must be >= 0")

    if config.relay.dedup_retention_s <= 0:
        errors.append("relay.dedup_retention_s must be > 0")

    if config.relay.sweep_interval_s <= 0:
        errors.append("relay.sweep_interval_s must be > 0")

    if config.server.treatment_fallback not in (0, 1):
        errors.append(f"server.treatment_fallback ({config.server.treatment_fallback}) must be 0 or 1")

    if config.storage.backend not in STORAGE_BACKENDS:
        errors.append(
            f"Unknown storage backend '{config.storage.backend}' "
            f"(expected one of {', '.join(STORAGE_BACKENDS)})"
        )

    return errors


def load_config(
    config_path: str | Path | None = None,
    config_dict: dict | None = None,
) -> SurveyFlowConfig:
    """Load config from dict, explicit path, or auto-discover."""
    if config_dict is not None:
        return _build_config(config_dict)

    if config_path is not None:
        path = Path(config_path)
    else:
        path = _discover_config()

    if path is None:
        return _build_config({})

    if not path.is_file():
        raise FileNotFoundError(f"Config file not found: {path}")

    text = path.read_text()
    if path.suffix == ".json":
        raw = json.loads(text)
    else:
        raw = yaml.safe_load(text) or {}

    return _build_config(raw)
