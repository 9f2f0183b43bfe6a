"""
Declarative registration from YAML manifests.

    behavior: method-name
    callables:
      - target: package.module:function
        name: Optional
    instances:
      - factory: package.module:Class
        methods: [upper, reverse]
        owned: true
"""
import importlib
from pathlib import Path
from typing import Any, List, Mapping

import yaml

from methodhub.hub_datatypes import HubError, ManifestError, RegisteringBehavior


def _read(source: Any) -> Mapping:
    if isinstance(source, Mapping):
        return source
    if isinstance(source, Path):
        text = source.read_text(encoding="utf-8")
    elif isinstance(source, str):
        # A single line naming an existing file is a path; anything else is YAML text.
        text = source
        if "\n" not in source and source.strip():
            candidate = Path(source)
            try:
                if candidate.is_file():
                    text = candidate.read_text(encoding="utf-8")
            except OSError:
                pass
    else:
        raise ManifestError(f"A manifest must be a path, YAML text or mapping, not {type(source).__name__}")
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ManifestError(f"Malformed manifest: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ManifestError("A manifest must be a mapping at the top level")
    return data


def resolve_target(target: Any) -> Any:
    """Imports 'package.module:attr' (attr may be dotted)."""
    if not isinstance(target, str) or ":" not in target:
        raise ManifestError(f"Target must look like 'package.module:name', got {target!r}")
    module_name, _, attr_path = target.partition(":")
    if not module_name or not attr_path:
        raise ManifestError(f"Target must look like 'package.module:name', got {target!r}")
    try:
        obj = importlib.import_module(module_name)
    except ImportError as e:
        raise ManifestError(f"Cannot import module '{module_name}': {e}") from e
    for part in attr_path.split("."):
        try:
            obj = getattr(obj, part)
        except AttributeError:
            raise ManifestError(f"'{module_name}' has no attribute '{attr_path}'") from None
    return obj


def _section(data: Mapping, key: str) -> List[Mapping]:
    items = data.get(key) or []
    if not isinstance(items, list):
        raise ManifestError(f"'{key}' must be a list")
    for item in items:
        if not isinstance(item, Mapping):
            raise ManifestError(f"Each entry of '{key}' must be a mapping, got {item!r}")
    return items


def load_manifest(hub, source: Any) -> List[str]:
    """Registers everything a manifest declares and returns the registered names.

    The whole manifest is checked and every target imported before the hub is
    touched. If a registration then fails, the ones made so far are rolled back.
    """
    data = _read(source)
    unknown = sorted(set(data) - {"behavior", "callables", "instances"})
    if unknown:
        raise ManifestError(f"Unknown manifest keys: {', '.join(map(str, unknown))}")

    try:
        default_behavior = RegisteringBehavior.parse(data["behavior"]) if data.get("behavior") else None
    except HubError as e:
        raise ManifestError(str(e)) from e

    plan = []
    for item in _section(data, "callables"):
        fn = resolve_target(item.get("target"))
        if not callable(fn):
            raise ManifestError(f"Target {item.get('target')!r} is not callable")
        try:
            behavior = RegisteringBehavior.parse(item["behavior"]) if item.get("behavior") else default_behavior
        except HubError as e:
            raise ManifestError(str(e)) from e
        plan.append(("callable", fn, item.get("name"), behavior))

    for item in _section(data, "instances"):
        factory = resolve_target(item.get("factory"))
        methods = item.get("methods")
        if not isinstance(methods, list) or not methods:
            raise ManifestError(f"Instance {item.get('factory')!r} needs a non-empty 'methods' list")
        # [method, name] pairs arrive as YAML lists.
        methods = [tuple(m) if isinstance(m, list) else m for m in methods]
        try:
            behavior = RegisteringBehavior.parse(item["behavior"]) if item.get("behavior") else default_behavior
        except HubError as e:
            raise ManifestError(str(e)) from e
        plan.append(("instance", factory, methods, behavior, bool(item.get("owned", True))))

    names: List[str] = []
    done: List[Any] = []
    try:
        for step in plan:
            if step[0] == "callable":
                _, fn, name, behavior = step
                names.append(hub.register(fn, name, behavior))
                done.append(fn)
            else:
                _, factory, methods, behavior, owned = step
                instance = factory()
                registered = hub.register_instance(instance, methods, behavior, owned=owned)
                names.extend(registered)
                done.extend(getattr(instance, m if isinstance(m, str) else m[0]) for m in methods)
    except Exception:
        for fn in done:
            if hub.is_registered(fn):
                hub.unregister(fn)
        raise
    return names
