"""Location keyword normalization.

Visitors may type city names in Turkish. Before the keyword goes to the
location search it is either translated via a city-name map (local name
prefix -> English name) or transliterated to ASCII.

Data source: a JSON object such as {"londra": "london", "paris": "paris"},
path taken from CITY_TRANSLATIONS_PATH.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, Optional

logger = logging.getLogger(__name__)

_TRANSLITERATION = str.maketrans({
    "İ": "I", "ı": "i",
    "Ş": "S", "ş": "s",
    "Ğ": "G", "ğ": "g",
    "Ü": "U", "ü": "u",
    "Ö": "O", "ö": "o",
    "Ç": "C", "ç": "c",
})


def load_translation_map(path: Optional[Path]) -> Dict[str, str]:
    """Read the city-name map. A missing or broken file yields an empty map."""
    if path is None:
        return {}
    if not path.is_file():
        logger.warning(f"City translation map not found: {path}")
        return {}
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.warning(f"Could not read city translation map {path}: {e}")
        return {}
    if not isinstance(raw, dict):
        logger.warning(f"City translation map {path} is not a JSON object")
        return {}
    return {str(k).lower(): str(v) for k, v in raw.items()}


def transliterate(keyword: str) -> str:
    return keyword.translate(_TRANSLITERATION)


def normalize_keyword(keyword: str, translations: Dict[str, str]) -> str:
    """First map entry whose key starts with the keyword wins.

    'lon' matches 'londra' and becomes 'london'.
    """
    keyword_lower = keyword.lower()
    for local_name, english_name in translations.items():
        if local_name.startswith(keyword_lower):
            logger.debug(f"Matched '{keyword}' to '{local_name}', searching for '{english_name}'")
            return english_name
    return transliterate(keyword)
