import asyncio
import logging
import os
from typing import Optional

import httpx

from .schemas import AnalysisResult

logger = logging.getLogger(__name__)

_GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.0-flash-lite")
GEMINI_URL = (
    f"https://generativelanguage.googleapis.com/v1beta"
    f"/models/{_GEMINI_MODEL}:generateContent"
)

MAX_RETRIES = 3
INITIAL_RETRY_DELAY = 1.0  # seconds, doubled after every rate-limited attempt
REQUEST_TIMEOUT = 90.0

RATE_LIMIT_ERROR = "Error: Unable to process request due to rate limits. Try again later."
API_FAILURE_ERROR = "Error: Unable to process request due to API failure."

NO_SUMMARY = "No summary available."

HIGH_RISK_KEYWORDS = (
    "infringement",
    "unauthorized",
    "lawsuit",
    "DMCA",
    "copyright violation",
)
MEDIUM_RISK_KEYWORDS = (
    "license required",
    "attribution",
    "restricted use",
    "permission needed",
)

BASE_RISK_SCORE = 10
HIGH_RISK_POINTS = 40
MEDIUM_RISK_POINTS = 20
MAX_RISK_SCORE = 100

LICENSING_PROMPT = """\
Analyze the licensing of the following content:
{content}
Provide a structured summary, risk assessment, and recommendations."""

LEGAL_QUESTION_PROMPT = """\
You are a digital rights and copyright assistant. Answer the user's question \
clearly and practically. Point out when a licence, permission or attribution \
is needed, and recommend consulting a legal professional for binding advice.
{context_block}
QUESTION:
{question}
"""


async def _generate_content(client: httpx.AsyncClient, prompt: str) -> str:
    """Send one prompt to Gemini and return the first candidate's text."""
    api_key = os.getenv("GEMINI_API_KEY", "")
    if not api_key:
        raise ValueError("GEMINI_API_KEY is not configured.")

    payload = {
        "contents": [{"role": "user", "parts": [{"text": prompt}]}],
        "generationConfig": {"temperature": 0.2},
    }

    response = await client.post(f"{GEMINI_URL}?key={api_key}", json=payload)
    response.raise_for_status()

    data = response.json()
    try:
        return data["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError) as exc:
        raise ValueError(f"Unexpected response from Gemini API: {exc}") from exc


def _is_rate_limited(exc: Exception) -> bool:
    return isinstance(exc, httpx.HTTPStatusError) and exc.response.status_code == 429


async def call_gemini(prompt: str, max_retries: int = MAX_RETRIES) -> str:
    """Call Gemini, retrying rate-limited attempts with exponential backoff.

    Never raises: a rate limit that outlasts ``max_retries`` attempts yields
    ``RATE_LIMIT_ERROR`` and any other failure yields ``API_FAILURE_ERROR``.
    """
    retry_count = 0
    retry_delay = INITIAL_RETRY_DELAY

    async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT) as client:
        while retry_count < max_retries:
            try:
                return await _generate_content(client, prompt)
            except Exception as exc:
                if not _is_rate_limited(exc):
                    # httpx messages embed the request URL, which carries the API key
                    if isinstance(exc, httpx.HTTPStatusError):
                        logger.error("Gemini API returned HTTP %d", exc.response.status_code)
                    else:
                        logger.error("Error calling Gemini API: %s", exc)
                    return API_FAILURE_ERROR

                retry_count += 1
                if retry_count >= max_retries:
                    logger.warning(
                        "Gemini rate limit persisted after %d attempts", retry_count
                    )
                    break

                logger.warning(
                    "Rate limited by Gemini, retrying in %.1fs (attempt %d/%d)",
                    retry_delay,
                    retry_count,
                    max_retries,
                )
                await asyncio.sleep(retry_delay)
                retry_delay *= 2

    return RATE_LIMIT_ERROR


def calculate_risk_score(response: str) -> int:
    """Score licensing risk from keywords found in the model's answer."""
    text = response.lower()
    score = BASE_RISK_SCORE

    for keyword in HIGH_RISK_KEYWORDS:
        if keyword.lower() in text:
            score += HIGH_RISK_POINTS

    for keyword in MEDIUM_RISK_KEYWORDS:
        if keyword.lower() in text:
            score += MEDIUM_RISK_POINTS

    return min(score, MAX_RISK_SCORE)


def _first_line(response: str) -> str:
    return response.split("\n", 1)[0] or NO_SUMMARY


async def analyze_licensing(content: str) -> AnalysisResult:
    """Ask Gemini about the licensing of ``content`` and score the answer.

    Always returns a result. Unexpected failures produce a zero-score
    degraded result instead of an exception.
    """
    try:
        logger.info("Analyzing content: %s...", content[:100])
        prompt = LICENSING_PROMPT.format(content=content)

        response = await call_gemini(prompt)

        return AnalysisResult(
            licensing_info=response,
            licensing_summary=_first_line(response),
            risk_score=calculate_risk_score(response),
        )
    except Exception:
        logger.exception("Unexpected error during licensing analysis")
        return AnalysisResult(
            licensing_info="API Error: Unable to analyze licensing at this time.",
            licensing_summary="Analysis failed due to API limitations.",
            risk_score=0,
        )


# ---------------------------------------------------------------------------
# Legal questions
# ---------------------------------------------------------------------------


def _fallback_answer(question: str, context: Optional[str] = None) -> str:
    """Canned guidance used when the model is unavailable."""
    q = question.lower()

    if "fair use" in q:
        lead = f"given the context of {context}, " if context else ""
        return (
            "Fair use is a legal doctrine that allows limited use of copyrighted "
            "material without requiring permission from the rights holders. "
            "It's determined by four factors:\n"
            "1. Purpose and character of use (commercial vs. educational)\n"
            "2. Nature of the copyrighted work\n"
            "3. Amount and substantiality of the portion used\n"
            "4. Effect on the potential market\n\n"
            f"In your case, {lead}the use would likely be considered fair use if "
            "it's for educational or transformative purposes, and doesn't "
            "significantly impact the market value of the original work."
        )

    if "creative commons" in q:
        lead = f"For your specific content ({context}), " if context else ""
        return (
            "Creative Commons licenses provide a standardized way to grant "
            "permissions for using creative works. There are six main types:\n"
            "- CC BY: Attribution only\n"
            "- CC BY-SA: Attribution + Share Alike\n"
            "- CC BY-NC: Attribution + Non-Commercial\n"
            "- CC BY-ND: Attribution + No Derivatives\n"
            "- CC BY-NC-SA: Attribution + Non-Commercial + Share Alike\n"
            "- CC BY-NC-ND: Attribution + Non-Commercial + No Derivatives\n\n"
            f"{lead}you should check the exact license terms to ensure "
            "compliance with the attribution and usage requirements."
        )

    if "commercial" in q or "business" in q:
        lead = f"Based on your content ({context}), " if context else ""
        return (
            "Commercial use of copyrighted content typically requires explicit "
            "permission or a license. Key considerations include:\n"
            "1. Purpose: Is it for profit or business use?\n"
            "2. Scope: How widely will it be distributed?\n"
            "3. Duration: How long will it be used?\n"
            "4. Territory: In which regions will it be used?\n\n"
            f"{lead}you would need to obtain proper licensing or permissions "
            "for commercial use."
        )

    if "public domain" in q:
        lead = f"Regarding your content ({context}), " if context else ""
        return (
            "Public domain works are not protected by copyright and can be "
            "freely used. Works enter the public domain through:\n"
            "1. Expiration of copyright term\n"
            "2. Failure to meet formal requirements\n"
            "3. Dedication by the copyright holder\n"
            "4. Works created by the U.S. government\n\n"
            f"{lead}you should verify its public domain status before using it freely."
        )

    lead = f"considering your content ({context}), " if context else ""
    return (
        f"Based on copyright law and best practices, {lead}"
        "here's what you need to know:\n\n"
        "1. Always verify the copyright status of content before use\n"
        "2. Obtain proper permissions or licenses when required\n"
        "3. Provide appropriate attribution when using licensed content\n"
        "4. Consider fair use exceptions for educational or transformative purposes\n"
        "5. Document your rights and permissions for future reference\n\n"
        "For specific guidance, consult with a legal professional or refer to "
        "official copyright guidelines."
    )


async def generate_legal_answer(question: str, context: Optional[str] = None) -> str:
    context_block = f"\nCONTENT CONTEXT:\n{context}\n" if context else ""
    prompt = LEGAL_QUESTION_PROMPT.format(context_block=context_block, question=question)

    try:
        answer = await call_gemini(prompt)
    except Exception:
        logger.exception("Unexpected error while answering legal question")
        answer = ""

    if not answer.strip() or answer in (RATE_LIMIT_ERROR, API_FAILURE_ERROR):
        logger.info("Falling back to canned guidance for legal question")
        return _fallback_answer(question, context)
    return answer
