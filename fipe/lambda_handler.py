"""AWS Lambda handler that exposes the FIPE batch lookup directly."""
from __future__ import annotations

from typing import Any, Dict, Optional

from .config import FipeConfig, coerce_positive_float, coerce_positive_int
from .export import summarize
from .model import FipeLookupModel


class _ModelFactory:
    """Callable wrapper used for dependency injection in tests."""

    def __call__(self, base_url: str, concurrency: int, timeout: float) -> FipeLookupModel:
        return FipeLookupModel(base_url=base_url, concurrency=concurrency, timeout=timeout)


_model_factory: _ModelFactory = _ModelFactory()


def handler(event: Optional[Dict[str, Any]], context: Any) -> Dict[str, Any]:
    """Entry point compatible with AWS Lambda container images.

    The event payload may contain a ``codes`` list and/or a free-form ``text``
    string; both are merged, normalised and deduplicated. Optional keys
    ``base_url``, ``concurrency`` and ``timeout`` override the environment
    configuration. A batch without any valid code raises
    :class:`~fipe.codes.NoValidCodesError`.
    """

    if event is None:
        raise ValueError("Event payload must be a mapping containing 'codes' or 'text'.")
    if not isinstance(event, dict):
        raise ValueError("Event payload must be a mapping.")

    defaults = FipeConfig.from_env()
    base_url = str(event.get("base_url") or defaults.base_url)
    concurrency = coerce_positive_int(event.get("concurrency", defaults.concurrency), "concurrency")
    timeout = coerce_positive_float(event.get("timeout", defaults.timeout), "timeout")

    text = event.get("text")
    if text is not None and not isinstance(text, str):
        raise ValueError("'text' must be a string when provided.")

    model = _model_factory(base_url, concurrency, timeout)
    try:
        results = model.batch_lookup(event.get("codes"), text)
    finally:
        model.close()

    response: Dict[str, Any] = dict(summarize(results))
    response["results"] = [result.to_dict() for result in results]
    return response


__all__ = ["handler"]
