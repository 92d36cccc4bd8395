"""Centralized prompt templates for LLM interactions."""

from pydantic import BaseModel

SELECTOR_SYSTEM_PROMPT = (
    "You are a web scraping expert specializing in e-commerce sites. "
    "Return only valid JSON."
)

FIELD_DESCRIPTIONS = {
    "current_price": (
        "The actual selling price (not strikethrough). Usually formatted like "
        "₹54,999 or inside an element with class a-price-whole"
    ),
    "original_price": (
        "The strikethrough/MRP price. Usually has class a-text-price or appears crossed out"
    ),
    "rating": 'Star rating like "4.5 out of 5 stars". Usually in aria-label or icon text',
    "review_count": 'Number of reviews/ratings like "2,847 ratings" or "2.8K"',
    "title": "Product name/title in the h2 or main heading",
    "image": "Product thumbnail image, usually with class s-image",
    "product_url": (
        "Link to the product detail page, usually an a tag inside the heading "
        "with an href pointing at the product"
    ),
    "product_card": "The main container element for each product in search results",
}


def describe_field(field_name: str) -> str:
    """Human-readable description of a field for the selector prompt."""
    return FIELD_DESCRIPTIONS.get(field_name, f"The {field_name} field")


class SelectorInferencePrompt(BaseModel):
    """Prompt schema for selector inference."""

    source: str
    field: str
    html_snippet: str

    def to_prompt(self) -> str:
        """Convert to prompt text."""
        return "\n".join([
            f"Analyze this HTML from the {self.source} search results page and find "
            f"the CSS selector for: {self.field}",
            "",
            "HTML Sample:",
            "```html",
            self.html_snippet,
            "```",
            "",
            "Requirements:",
            "- Return ONLY a JSON object, no explanation outside it",
            "- Provide 3 alternative selectors (primary, fallback1, fallback2)",
            "- Selectors are evaluated relative to the element shown above",
            "- Each selector should be specific but flexible, since the markup changes often",
            "",
            "Return format:",
            "{",
            '  "primary": "CSS selector here",',
            '  "fallback1": "Alternative selector",',
            '  "fallback2": "Another alternative",',
            '  "explanation": "Brief explanation of why this selector works"',
            "}",
            "",
            f"Field to find: {describe_field(self.field)}",
        ])
