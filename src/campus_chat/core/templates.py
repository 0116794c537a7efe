import os
from typing import Any

import yaml

_templates_cache = None


def _load_templates() -> dict:
    global _templates_cache
    if _templates_cache is None:
        path = os.path.join(os.path.dirname(__file__), 'static', 'text_templates.yaml')
        with open(path, 'r', encoding='utf-8') as f:
            _templates_cache = yaml.safe_load(f)
    return _templates_cache


def get_template(key: str) -> Any:
    """Get a raw template entry (string, list or mapping)."""
    return _load_templates().get(key, f"[No template for {key}]")


def get_text_template(key: str, **kwargs: Any) -> str:
    """Get a text template formatted with ``kwargs``."""
    template = get_template(key)
    if not isinstance(template, str):
        return f"[No template for {key}]"
    return template.format(**kwargs) if kwargs else template
