from __future__ import annotations

import importlib
import logging
from collections.abc import Callable, Sequence
from typing import Any

"""Post-import hooks.

Hooks are named ``package.module:function`` (``package.module.function`` is
accepted too) and called with the import's destination object: the table,
the join target, or ``None`` for standalone records.

Methods run for their side effects; a hook that cannot be resolved, or a
method that raises, is logged and skipped. Validations must return ``bool``;
anything else, and any hook that cannot be resolved or raises, counts as a
failed validation.
"""

__all__ = [
    "HookError",
    "resolve_hook",
    "run_methods",
    "run_validations",
]

logger = logging.getLogger(__name__)


class HookError(Exception):
    pass


def resolve_hook(hook_name: str) -> Callable[..., Any]:
    if ":" in hook_name:
        module_name, _, attr = hook_name.partition(":")
    else:
        module_name, _, attr = hook_name.rpartition(".")
    if not module_name or not attr:
        raise HookError(f"invalid hook name: {hook_name!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise HookError(f"hook module not found: {module_name} ({e})") from e
    target: Any = module
    for part in attr.split("."):
        target = getattr(target, part, None)
        if target is None:
            raise HookError(f"hook not found: {hook_name}")
    if not callable(target):
        raise HookError(f"hook is not callable: {hook_name}")
    return target


def run_methods(hook_names: Sequence[str], destination: Any) -> int:
    """Call each method hook; returns how many ran."""
    ran = 0
    for hook_name in hook_names:
        try:
            fn = resolve_hook(hook_name)
        except HookError as e:
            logger.error("%s", e)
            continue
        try:
            fn(destination)
        except Exception:
            logger.exception("method %s raised", hook_name)
            continue
        ran += 1
    return ran


def run_validations(hook_names: Sequence[str], destination: Any) -> bool | None:
    """Conjunction of every validation hook; None when none are configured."""
    if not hook_names:
        return None
    ok = True
    for hook_name in hook_names:
        try:
            result = resolve_hook(hook_name)(destination)
        except HookError as e:
            logger.error("%s", e)
            ok = False
            continue
        except Exception as e:
            logger.error("validation %s raised: %s", hook_name, e)
            ok = False
            continue
        if not isinstance(result, bool):
            logger.error("validation %s must return bool, got %s", hook_name, type(result).__name__)
            ok = False
        elif not result:
            logger.warning("validation failed: %s", hook_name)
            ok = False
    return ok
