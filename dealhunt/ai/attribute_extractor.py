"""Rule-based attribute extraction from product titles."""

import logging
import re
from typing import Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

_FLAGS = re.IGNORECASE

# attribute -> ordered (pattern, expansion template); first match wins per attribute
ATTRIBUTE_PATTERNS: Dict[str, List[Tuple[re.Pattern, str]]] = {
    "ram": [
        (re.compile(r"\b(\d+)\s*GB\s*RAM\b", _FLAGS), r"\1GB"),
        (re.compile(r"\bRAM\s*(\d+)\s*GB\b", _FLAGS), r"\1GB"),
    ],
    "storage": [
        (re.compile(r"\b(\d+)\s*TB\b", _FLAGS), r"\1TB"),
        (re.compile(r"\b(\d+)\s*GB\b(?!\s*RAM)", _FLAGS), r"\1GB"),
    ],
    "display_size": [
        (re.compile(r"\b(\d+(?:\.\d+)?)\s*(?:inch(?:es)?|\")", _FLAGS), r"\1 inch"),
        (re.compile(r"\b(\d+(?:\.\d+)?)\s*cm\b", _FLAGS), r"\1 cm"),
    ],
    "battery": [
        (re.compile(r"\b(\d+)\s*mAh\b", _FLAGS), r"\1mAh"),
    ],
    "connectivity": [
        (re.compile(r"\b5G\b", _FLAGS), "5G"),
        (re.compile(r"\b(?:4G|LTE)\b", _FLAGS), "4G"),
    ],
    "camera": [
        (re.compile(r"\b(\d+)\s*MP\b", _FLAGS), r"\1MP"),
    ],
    "processor": [
        (re.compile(r"\bSnapdragon\s+\d+\w*(?:\s+(?:Gen\s*\d+|Plus))?", _FLAGS), r"\g<0>"),
        (re.compile(r"\b(?:MediaTek\s+)?Dimensity\s+\d+\w*", _FLAGS), r"\g<0>"),
        (re.compile(r"\b(?:MediaTek\s+)?Helio\s+[A-Z]?\d+\w*", _FLAGS), r"\g<0>"),
        (re.compile(r"\bExynos\s+\d+\w*", _FLAGS), r"\g<0>"),
        (re.compile(r"\b(?:Google\s+)?Tensor(?:\s+G\d+)?\b", _FLAGS), r"\g<0>"),
        (re.compile(r"\bA\d+\s*(?:Pro\s+)?Bionic\b", _FLAGS), r"\g<0>"),
        (re.compile(r"\b(?:Snapdragon|MediaTek|Dimensity|Exynos|Helio|Unisoc)\b", _FLAGS), r"\g<0>"),
    ],
    "os": [
        (re.compile(r"\bAndroid\s*(\d+)", _FLAGS), r"Android \1"),
        (re.compile(r"\bAndroid\b", _FLAGS), "Android"),
        (re.compile(r"\biOS\s*(\d+)", _FLAGS), r"iOS \1"),
        (re.compile(r"\b(?:iOS|iPhone)\b", _FLAGS), "iOS"),
    ],
    "refresh_rate": [
        (re.compile(r"\b(\d+)\s*Hz\b", _FLAGS), r"\1Hz"),
    ],
    "fast_charging": [
        (re.compile(r"\b(\d+)\s*W\b", _FLAGS), r"\1W"),
    ],
    "color": [
        (
            re.compile(
                r"\b(Black|White|Blue|Green|Red|Gold|Silver|Purple|Pink|Grey|Gray|"
                r"Orange|Yellow|Titanium|Bronze)\b",
                _FLAGS,
            ),
            r"\1",
        ),
    ],
}

POSTPROCESS: Dict[str, Callable[[str], str]] = {
    "processor": lambda value: " ".join(value.split())[:50],
    "color": str.capitalize,
}


class TitleAttributeExtractor:
    """
    Derive structured specifications from a free-text product title.

    Every attribute has its own ordered pattern list; a miss on one attribute
    never affects the others, so rules can be added one attribute at a time.
    """

    def __init__(self, patterns: Optional[Dict[str, List[Tuple[re.Pattern, str]]]] = None):
        self.patterns = patterns or ATTRIBUTE_PATTERNS

    def extract(self, title: Optional[str]) -> Dict[str, str]:
        """
        Extract attributes from a title.

        Args:
            title: Product title

        Returns:
            Mapping of attribute name to normalized value (only matched attributes)
        """
        if not title:
            return {}

        attributes: Dict[str, str] = {}
        for name, rules in self.patterns.items():
            value = self._first_match(title, rules)
            if value:
                postprocess = POSTPROCESS.get(name)
                attributes[name] = postprocess(value) if postprocess else value
        return attributes

    @staticmethod
    def _first_match(text: str, rules: List[Tuple[re.Pattern, str]]) -> Optional[str]:
        for pattern, template in rules:
            match = pattern.search(text)
            if match:
                return match.expand(template).strip()
        return None


# Global title attribute extractor instance
title_attribute_extractor = TitleAttributeExtractor()
