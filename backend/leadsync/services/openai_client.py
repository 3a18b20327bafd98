import logging
from typing import Optional

from tenacity import retry, wait_exponential, stop_after_attempt
from openai import AsyncOpenAI

from ..config import Settings
from ..schemas.pydantic_schemas import ExtractionResult
from .intent import classify_intent

logger = logging.getLogger(__name__)


EXTRACTION_SYSTEM_PROMPT = (
    "You are an intelligent assistant for a call receptionist system that extracts structured information "
    "from call transcripts."
)

EXTRACTION_USER_PROMPT = (
    "Extract contact information and generate summaries from this call transcript. "
    "Return a JSON object with these fields:\n"
    "{{\n"
    "  \"client_name\": \"<name or null>\",\n"
    "  \"client_email\": \"<email or null>\",\n"
    "  \"client_address\": \"<address or null>\",\n"
    "  \"appointment_date\": \"<YYYY-MM-DD or null>\",\n"
    "  \"appointment_time\": \"<HH:MM or null>\",\n"
    "  \"summary\": \"<call summary>\",\n"
    "  \"quick_summary\": \"<1-2 sentence summary>\",\n"
    "  \"intent_category\": \"<Service | Emergency | Quotation | Inquiry | Others>\",\n"
    "  \"job_description\": \"<job description or null>\",\n"
    "  \"job_type\": \"<job type or null>\",\n"
    "  \"appointment_start\": \"<HH:MM or null>\",\n"
    "  \"appointment_end\": \"<HH:MM or null>\"\n"
    "}}\n\n"
    "Transcript: \"\"\"{transcript}\"\"\""
)


class OpenAIClient:
    def __init__(self, settings: Settings, client: Optional[AsyncOpenAI] = None) -> None:
        # Groq first when configured, then OpenAI
        groq_key = settings.groq_api_key
        openai_key = settings.openai_api_key

        if client is not None:
            self.client = client
            self.model = settings.openai_model
            self.simulated = False
        elif groq_key and len(groq_key.strip()) > 0:
            self.client = AsyncOpenAI(
                api_key=groq_key,
                base_url="https://api.groq.com/openai/v1",
                timeout=settings.http_timeout,
            )
            self.model = settings.groq_model
            self.simulated = False
            logger.info("OpenAIClient: using Groq API")
        elif openai_key and len(openai_key.strip()) > 0:
            self.client = AsyncOpenAI(api_key=openai_key, timeout=settings.http_timeout)
            self.model = settings.openai_model
            self.simulated = False
            logger.info("OpenAIClient: using OpenAI API")
        else:
            self.client = None
            self.model = None
            self.simulated = True
            logger.info("OpenAIClient: using simulated responses (no API keys)")

    @retry(wait=wait_exponential(min=1, max=10), stop=stop_after_attempt(3), reraise=True)
    async def _complete(self, transcript: str) -> Optional[str]:
        chat = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": EXTRACTION_SYSTEM_PROMPT},
                {"role": "user", "content": EXTRACTION_USER_PROMPT.format(transcript=transcript)},
            ],
            response_format={"type": "json_object"},
        )
        return chat.choices[0].message.content

    async def extract_call_details(self, transcript: str) -> ExtractionResult:
        """Extract contact, appointment and summary fields from a transcript.

        API errors propagate once retries are exhausted. A reply that isn't a
        JSON object is logged and treated as an empty extraction.
        """
        if self.simulated:
            return ExtractionResult(intent_category=classify_intent(transcript))

        content = await self._complete(transcript)
        result = ExtractionResult.parse(content)
        if result is None:
            logger.error("Failed to parse AI extraction result")
            return ExtractionResult()
        return result
