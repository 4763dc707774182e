"""FIPE batch price lookup package."""

# Keep package import light-weight; avoid importing FastAPI app at package import time.
from .codes import NoValidCodesError, collect_codes, normalize_code, parse_codes, unique_preserve_order
from .config import FipeConfig
from .model import FipeLookupModel, LookupResult, RemoteLookupError

__all__ = [
    "FipeConfig",
    "FipeLookupModel",
    "LookupResult",
    "NoValidCodesError",
    "RemoteLookupError",
    "collect_codes",
    "normalize_code",
    "parse_codes",
    "unique_preserve_order",
]
