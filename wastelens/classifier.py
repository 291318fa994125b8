import base64
import json
import logging
import os
import re
from functools import lru_cache
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import instructor
from groq import Groq
from instructor.exceptions import InstructorRetryException
from pydantic import ValidationError as PydanticValidationError

from . import config
from .classes.waste import AnalysisResult
from .errors import CollaboratorError, Err, Ok, Result, ValidationError

logger = logging.getLogger(__name__)

# Load the classification prompts from file
prompt_path = os.path.join(os.path.dirname(__file__), "classify_prompt.txt")
with open(prompt_path, "r") as f:
    CLASSIFY_PROMPT = f.read()

prompt_path = os.path.join(os.path.dirname(__file__), "refine_prompt.txt")
with open(prompt_path, "r") as f:
    REFINE_PROMPT = f.read()

FALLBACK_BANNER = "We couldn't analyse this photo, so here is a rough estimate. Please check the details before saving."

FALLBACK_ANALYSIS = AnalysisResult(
    item_name="Unidentified Item",
    quantity=1,
    weight_grams=50,
    material="Mixed Material",
    environment_score=5,
    recyclable=False,
    compostable=False,
    carbon_footprint_kg=0.1,
    suggestions=[
        "Take to appropriate disposal facility",
        "Consider reusable alternatives",
        "Look for specialized recycling programs",
    ],
    confidence=0.3,
)


@lru_cache(maxsize=1)
def get_client():
    client_groq = Groq(api_key=config.GROQ_API_KEY)
    return instructor.from_groq(client_groq, mode=instructor.Mode.JSON)


def fallback_analysis() -> AnalysisResult:
    return FALLBACK_ANALYSIS.model_copy(deep=True)


def _validation_messages(error: PydanticValidationError) -> List[str]:
    messages = []
    for detail in error.errors():
        location = ".".join(str(part) for part in detail.get("loc", ())) or "response"
        messages.append(f"{location}: {detail.get('msg', 'invalid value')}")
    return messages


def clean_json_response(response_content: str) -> Dict[str, Any]:
    """
    Extract JSON from an LLM response that might be wrapped in markdown
    fences or be missing its outer braces.
    """
    cleaned_content = response_content.strip()
    if cleaned_content.startswith("```"):
        match = re.search(r"```(?:json)?\s*([\s\S]*?)\s*```", cleaned_content)
        if match:
            cleaned_content = match.group(1)

    if not cleaned_content.startswith("{"):
        cleaned_content = "{" + cleaned_content
    if not cleaned_content.endswith("}"):
        cleaned_content = cleaned_content + "}"

    return json.loads(cleaned_content)


def parse_analysis(raw: Union[str, bytes, Mapping[str, Any]]) -> Result:
    """Strict parse-and-validate boundary for classification payloads."""
    try:
        if isinstance(raw, (str, bytes)):
            text = raw.decode("utf-8") if isinstance(raw, bytes) else raw
            try:
                payload = json.loads(text)
            except json.JSONDecodeError:
                payload = clean_json_response(text)
        else:
            payload = dict(raw)
    except (ValueError, TypeError) as e:
        return Err(ValidationError([f"Response is not valid JSON: {e}"]))

    if not isinstance(payload, dict):
        return Err(ValidationError(["Response is not a JSON object"]))

    try:
        return Ok(AnalysisResult.model_validate(payload))
    except PydanticValidationError as e:
        return Err(ValidationError(_validation_messages(e)))


def _image_messages(prompt: str, image_bytes: bytes, mime_type: str) -> List[Dict[str, Any]]:
    base64_image = base64.b64encode(image_bytes).decode("utf-8")
    return [
        {
            "role": "user",
            "content": [
                {
                    "type": "text",
                    "text": prompt,
                },
                {
                    "type": "image_url",
                    "image_url": {
                        "url": f"data:{mime_type};base64,{base64_image}",
                    },
                },
            ],
        }
    ]


def _request_analysis(messages: List[Dict[str, Any]], client=None) -> Result:
    client = client or get_client()
    try:
        analysis = client.chat.completions.create(
            model=config.VISION_MODEL,
            response_model=AnalysisResult,
            messages=messages,
            temperature=config.TEMPERATURE,
            max_completion_tokens=config.MAX_COMPLETION_TOKENS,
            top_p=1,
            stream=False,
            stop=None,
        )
    except PydanticValidationError as e:
        logger.error(f"Vision model returned an invalid analysis: {e}")
        return Err(ValidationError(_validation_messages(e)))
    except InstructorRetryException as e:
        logger.error(f"Vision model never produced a valid analysis: {e}")
        return Err(ValidationError([f"Malformed classification response: {e}"]))
    except Exception as e:
        logger.error(f"Classification request failed: {type(e).__name__} - {e}")
        return Err(CollaboratorError("classifier", str(e)))

    # Some providers hand back a plain mapping; hold it to the same contract
    if not isinstance(analysis, AnalysisResult):
        return parse_analysis(analysis)
    return Ok(analysis)


def classify_waste_image(image_bytes: bytes, mime_type: str = "image/jpeg", client=None) -> Result:
    if not image_bytes:
        return Err(ValidationError(["No image provided"]))
    logger.info("Starting waste analysis")
    return _request_analysis(_image_messages(CLASSIFY_PROMPT, image_bytes, mime_type), client)


def refine_classification(
    previous: AnalysisResult,
    feedback_text: str,
    image_bytes: bytes,
    mime_type: str = "image/jpeg",
    client=None,
) -> Result:
    if not image_bytes:
        return Err(ValidationError(["No image provided"]))
    if not (feedback_text or "").strip():
        return Err(ValidationError(["Feedback is required to refine an analysis"]))

    prompt = (
        f"{REFINE_PROMPT}\n"
        f"Previous analysis: {previous.model_dump_json(by_alias=True)}\n"
        f"User feedback: {feedback_text.strip()}"
    )
    logger.info("Refining waste analysis with user feedback")
    return _request_analysis(_image_messages(prompt, image_bytes, mime_type), client)


def with_fallback(result: Result) -> Tuple[AnalysisResult, Optional[str]]:
    """
    Never block the user on a failed classification: substitute the fixed
    low-confidence estimate and return the banner text to show with it.
    """
    if result.ok:
        return result.value, None
    logger.warning(f"Using fallback analysis: {result.error}")
    return fallback_analysis(), FALLBACK_BANNER


def classify_with_fallback(image_bytes: bytes, mime_type: str = "image/jpeg", client=None) -> Tuple[AnalysisResult, Optional[str]]:
    return with_fallback(classify_waste_image(image_bytes, mime_type, client))
