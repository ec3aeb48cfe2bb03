"""User-visible texts and WhatsApp interactive menus, loaded from YAML."""

from __future__ import annotations

import random
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml

from deskbot.logging_config import get_logger

logger = get_logger("content")

CONTENT_PATH = Path(__file__).resolve().parents[1] / "content" / "messages.yaml"
MAX_ROW_TITLE_LENGTH = 24


class ContentError(KeyError):
    pass


@lru_cache(maxsize=2)
def load_content(path: Path = CONTENT_PATH) -> dict:
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        raise ContentError(f"content file {path} must be a mapping")
    _check_menu_titles(data.get("menus") or {})
    return data


def _check_menu_titles(menus: dict) -> None:
    for menu_key, menu in menus.items():
        for row in menu.get("rows", []):
            title = row.get("title", "")
            if len(title) > MAX_ROW_TITLE_LENGTH:
                logger.warning(
                    "Interactive row title too long",
                    extra={"context": {"menu": menu_key, "row_id": row.get("id"), "length": len(title)}},
                )


def _section(name: str) -> dict:
    return load_content().get(name) or {}


def get_text(key: str, **fmt: Any) -> str:
    value = _section("texts").get(key)
    if value is None:
        raise ContentError(key)
    if isinstance(value, list):
        value = random.choice(value)
    return value.format(**fmt) if fmt else value


def get_staff_text(key: str, **fmt: Any) -> str:
    value = _section("staff").get(key)
    if value is None:
        raise ContentError(key)
    return value.format(**fmt)


def menu_options(menu_key: str) -> list[dict]:
    menu = _section("menus").get(menu_key)
    if menu is None:
        raise ContentError(menu_key)
    return [dict(row) for row in menu.get("rows", [])]


def option_title(menu_key: str, option_id: str) -> str:
    for row in menu_options(menu_key):
        if row["id"] == option_id:
            return row["title"]
    return option_id


def build_menu(menu_key: str, **fmt: Any) -> dict:
    """Interactive list payload (``interactive`` object of the Cloud API)."""
    menu = _section("menus").get(menu_key)
    if menu is None:
        raise ContentError(menu_key)

    body = menu.get("body", "")
    rows = []
    for row in menu.get("rows", []):
        item = {"id": row["id"], "title": row["title"]}
        if row.get("description"):
            item["description"] = row["description"]
        rows.append(item)
    return {
        "type": "list",
        "body": {"text": body.format(**fmt) if fmt else body},
        "action": {
            "button": menu.get("button", "Ver opciones"),
            "sections": [{"rows": rows}],
        },
    }
