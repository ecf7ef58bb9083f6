"""
Expense Extraction using Gemini

The user types "Spent $45 on groceries at Walmart yesterday" or snaps a
receipt; Gemini proposes one or more transactions, each assigned to one of
the user's budgets.

CRITICAL BOUNDARIES:
- The model only PROPOSES transactions; nothing is written here
- Every proposal is validated against the candidate budgets
- A response that is not valid JSON, or fails validation, is rejected
  as a whole. No partial imports.
"""

import json
from datetime import date
from io import BytesIO
from typing import Optional, Union

import google.generativeai as genai
import structlog
from PIL import Image, UnidentifiedImageError

from budgetsync.config import GeminiSettings, get_settings
from budgetsync.errors import ExtractionServiceError, ExtractionValidationError
from budgetsync.models.extraction import CandidateBudget, ExtractionResult
from budgetsync.validation import ExtractionValidator


logger = structlog.get_logger(__name__)

ExtractionSource = Union[str, bytes, Image.Image]

# Receipts larger than this are downscaled before upload
MAX_IMAGE_SIDE = 2048


class GeminiExtractionService:
    """
    Turns free text or a receipt image into validated transactions.

    The Gemini model is created lazily so the rest of the app runs
    without an API key.
    """

    def __init__(
        self,
        settings: Optional[GeminiSettings] = None,
        validator: Optional[ExtractionValidator] = None,
        model=None,
    ):
        self._settings = settings or get_settings().gemini
        self._validator = validator or ExtractionValidator()
        self._model = model

    @property
    def is_configured(self) -> bool:
        return self._model is not None or self._settings.is_configured

    def _get_model(self):
        """Get or create the Gemini model."""
        if self._model is None:
            if not self._settings.is_configured:
                raise ExtractionServiceError("Extraction service API key not configured")
            genai.configure(api_key=self._settings.api_key)
            self._model = genai.GenerativeModel(
                model_name=self._settings.model_name,
                generation_config={
                    "temperature": self._settings.temperature,
                    "max_output_tokens": self._settings.max_tokens,
                    "response_mime_type": "application/json",
                },
            )
        return self._model

    def build_prompt(
        self,
        candidates: list[CandidateBudget],
        today: Optional[date] = None,
    ) -> str:
        """System prompt listing the budgets the model may choose from."""
        today = today or date.today()
        budget_list = json.dumps(
            [{"name": c.name, "id": c.id} for c in candidates],
            indent=2,
        )

        return f"""You are a helpful receipt tracking AI. Review the details provided by the user and create one or more transactions to be added to their budgets.

Each transaction must include:
- Description: a clear description of the expense
- Amount: the amount as a number
- Date: in YYYY-MM-DD format (use today's date if not specified)
- Budget: name of the budget
- BudgetID: must match one of the provided budget ids

Budgets:
{budget_list}

Respond with ONLY a JSON object in this exact format:
{{"transactions": [{{"Description": "string", "Amount": 0.0, "Date": "YYYY-MM-DD", "Budget": "string", "BudgetID": "string"}}]}}

Notes:
- Today's date is {today.isoformat()}
- Use the exact BudgetID from the list
- Amounts must be numbers, not strings
- If the amount is not stated, make a reasonable estimate from the description
- If several budgets could apply, choose the most appropriate one"""

    def _load_image(self, source: Union[bytes, Image.Image]) -> Image.Image:
        if isinstance(source, Image.Image):
            image = source
        else:
            try:
                image = Image.open(BytesIO(source))
                image.load()
            except (UnidentifiedImageError, OSError) as e:
                raise ExtractionServiceError(f"Unreadable receipt image: {e}") from e

        if image.mode not in ("RGB", "L"):
            image = image.convert("RGB")
        if max(image.size) > MAX_IMAGE_SIDE:
            image = image.copy()
            image.thumbnail((MAX_IMAGE_SIDE, MAX_IMAGE_SIDE))
        return image

    def _build_content(self, source: ExtractionSource, prompt: str) -> list:
        if isinstance(source, str):
            if not source.strip():
                raise ExtractionServiceError("Nothing to extract: the description is empty")
            return [prompt, f"User input: {source.strip()}"]
        image = self._load_image(source)
        return [
            prompt,
            "Please analyze this receipt and extract the relevant information.",
            image,
        ]

    def parse_response(self, text: str) -> dict:
        """
        Parse the model's JSON answer.

        Tolerates a markdown code fence around the object.

        Raises:
            ExtractionValidationError: If the text is not JSON
        """
        cleaned = text.strip()
        if cleaned.startswith("```"):
            cleaned = cleaned.strip("`")
            if cleaned.lower().startswith("json"):
                cleaned = cleaned[4:]
        try:
            return json.loads(cleaned)
        except json.JSONDecodeError as e:
            raise ExtractionValidationError(
                "Failed to parse extraction response as JSON"
            ) from e

    async def extract(
        self,
        source: ExtractionSource,
        candidates: list[CandidateBudget],
    ) -> ExtractionResult:
        """
        Extract transactions from text or a receipt image.

        Args:
            source: Free text, raw image bytes, or a PIL image
            candidates: Budgets the transactions may be assigned to

        Returns:
            ExtractionResult with at least one transaction

        Raises:
            ExtractionServiceError: Not configured, unreadable input,
                                    or the request failed
            ExtractionValidationError: The answer is not valid JSON or a
                                       transaction fails validation
        """
        if not candidates:
            raise ExtractionServiceError("There are no budgets to add expenses to")

        model = self._get_model()
        content = self._build_content(source, self.build_prompt(candidates))

        try:
            response = await model.generate_content_async(content)
            text = response.text
        except Exception as e:
            logger.warning("extraction_request_failed", error=str(e))
            raise ExtractionServiceError(f"Extraction request failed: {e}") from e

        if not text or not text.strip():
            raise ExtractionServiceError("No response content from extraction service")

        payload = self.parse_response(text)
        transactions = self._validator.validate_or_raise(payload, candidates)

        logger.debug("extraction_parsed", transaction_count=len(transactions))
        return ExtractionResult(transactions=transactions, raw_response=text)
