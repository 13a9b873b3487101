"""Prompt template for receipt classification and extraction.

Prompts are versioned so stored review items can be traced back to the
instructions that produced them.
"""

from __future__ import annotations

from dataclasses import dataclass

PROMPT_VERSION = "v1.0"


@dataclass
class ReceiptExtractionPrompt:
    """Fixed instruction prompt for the three-way receipt classifier.

    Attributes:
        version: Prompt version.
        template: Instruction text with a {content} placeholder.
    """

    version: str = PROMPT_VERSION

    template: str = """You are a receipt and billing document analyzer. Your task is to classify and extract data from receipts.

CLASSIFICATION OPTIONS:
- "subscription": Recurring payment (monthly/yearly service)
- "domain": Domain registration or renewal
- "junk": Spam, promotional email, or irrelevant content

CONFIDENCE: Return a value from 0.0 to 1.0 indicating how confident you are.

EXTRACTION RULES:
- For subscriptions: Extract vendor name, amount, currency, billing cycle (monthly/yearly/one-time), next billing date, and category
- For domains: Extract domain name, registrar, expiry date, registration date, auto-renew flag, cost and currency
- For junk: Only return type and confidence, no data field
- All dates should be in ISO format (YYYY-MM-DD)
- Currency codes should be 3-letter ISO codes (USD, EUR, GBP, etc.)

Return ONLY valid JSON matching this structure:
{{
  "type": "subscription" | "domain" | "junk",
  "confidence": 0.0-1.0,
  "data": {{
    // For subscriptions:
    "vendor": "string",
    "amount": number,
    "currency": "string",
    "cycle": "monthly" | "yearly" | "one-time",
    "next_billing": "YYYY-MM-DD" (optional),
    "category": "string" (optional)

    // For domains:
    "domain_name": "string",
    "registrar": "string" (optional),
    "expiry_date": "YYYY-MM-DD",
    "registration_date": "YYYY-MM-DD" (optional),
    "auto_renew": true | false (optional),
    "cost": number (optional),
    "currency": "string" (optional)
  }}
}}

RECEIPT CONTENT:
{content}
"""

    def format(self, content: str) -> str:
        """Embed converted receipt text into the prompt.

        Args:
            content: Markdown produced by the converter.

        Returns:
            Complete prompt text.
        """
        return self.template.format(content=content)
