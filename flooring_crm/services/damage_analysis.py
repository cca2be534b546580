"""
Floor damage assessment from photos

Sends a job-site photo to a vision model, normalizes the JSON it returns into
a DamageAnalysis and, when the photo belongs to a client, files a report.
"""

import asyncio
import base64
import binascii
import json
import logging
import re
from typing import Any, Dict, List, Optional, Union

from openai import OpenAI

from flooring_crm.models import DamageAnalysis, DamageCost, DamageReport, utc_now_iso

logger = logging.getLogger(__name__)

ANALYSIS_PROMPT = """You are a professional flooring inspector. Analyze this image and provide:
1. Floor type and material details
2. List of visible defects or damage
3. Severity assessment (0-1 scale, where 1 is most severe)
4. Specific repair recommendations
5. Estimated repair costs

Format your response as JSON with the following structure:
{
  "severity": number,
  "issues": string[],
  "recommendations": string[],
  "costs": [{ "item": string, "amount": number }]
}"""

MAX_IMAGE_SIZE = 20 * 1024 * 1024  # 20MB
MAX_RETRIES = 3

JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")

# Substring in the provider error -> what the user is told
PROVIDER_ERRORS = {
    'model_not_found': "The AI model is currently unavailable. Please try again later.",
    'invalid_api_key': "Invalid API key configuration. Please contact support.",
    'rate_limit_exceeded': "Service is currently busy. Please try again in a few minutes.",
}


class DamageAnalysisError(Exception):
    pass


def _number(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def normalize_analysis(raw: Dict[str, Any]) -> DamageAnalysis:
    costs = raw.get('costs') if isinstance(raw.get('costs'), list) else []
    return DamageAnalysis(
        severity=max(0.0, min(1.0, _number(raw.get('severity')))),
        issues=[str(i) for i in raw.get('issues')] if isinstance(raw.get('issues'), list) else [],
        recommendations=([str(r) for r in raw.get('recommendations')]
                         if isinstance(raw.get('recommendations'), list) else []),
        costs=[
            DamageCost(item=str(cost.get('item') or ''), amount=_number(cost.get('amount')))
            for cost in costs if isinstance(cost, dict)
        ],
    )


def parse_analysis(content: Optional[str]) -> DamageAnalysis:
    if not content:
        raise DamageAnalysisError("No analysis generated")

    match = JSON_OBJECT_RE.search(content)
    if not match:
        raise DamageAnalysisError("Invalid response format")
    try:
        raw = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise DamageAnalysisError("Failed to parse analysis results") from e
    if not isinstance(raw, dict):
        raise DamageAnalysisError("Invalid response format")
    return normalize_analysis(raw)


def report_from_row(row: Dict[str, Any]) -> DamageReport:
    return DamageReport(
        id=str(row.get('id') or ''),
        clientId=row.get('client_id'),
        date=row.get('date') or '',
        imageUrl=row.get('image_url') or '',
        analysis=normalize_analysis(row),
        notes=row.get('notes'),
    )


class DamageAnalyzer:
    """Vision-model damage assessment with saved per-client history"""

    def __init__(self, openai_api_key: str, store=None, model: str = "gpt-4o", retry_delay: float = 1.0):
        self.openai_client = OpenAI(api_key=openai_api_key) if openai_api_key else None
        self.store = store
        self.model = model
        self.retry_delay = retry_delay
        self.max_tokens = 500
        self.temperature = 0.5

    @staticmethod
    def encode_image(image: Union[bytes, str]) -> str:
        """Return the base64 payload of raw bytes or a (data URL) base64 string"""
        if isinstance(image, bytes):
            data = image
            encoded = base64.b64encode(image).decode('ascii')
        else:
            encoded = image.split('base64,', 1)[1] if 'base64,' in image else image
            try:
                data = base64.b64decode(encoded, validate=True)
            except (binascii.Error, ValueError) as e:
                raise DamageAnalysisError("Invalid image data format") from e

        if not data:
            raise DamageAnalysisError("No image data provided")
        if len(data) > MAX_IMAGE_SIZE:
            raise DamageAnalysisError("Image size exceeds maximum limit of 20MB")
        return encoded

    def build_messages(self, encoded_image: str) -> List[Dict[str, Any]]:
        return [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": ANALYSIS_PROMPT},
                    {
                        "type": "image_url",
                        "image_url": {"url": f"data:image/jpeg;base64,{encoded_image}", "detail": "high"},
                    },
                ],
            }
        ]

    @staticmethod
    def user_message(error: Exception) -> str:
        text = f"{getattr(error, 'code', '') or ''} {error}"
        for code, message in PROVIDER_ERRORS.items():
            if code in text:
                return message
        return str(error) or "Failed to analyze image"

    async def analyze_image(self, image: Union[bytes, str], client_id: Optional[str] = None) -> DamageAnalysis:
        if self.openai_client is None:
            raise DamageAnalysisError("OpenAI API key not configured")
        if not image:
            raise DamageAnalysisError("No image data provided")

        encoded = self.encode_image(image)
        messages = self.build_messages(encoded)

        for attempt in range(1, MAX_RETRIES + 1):
            try:
                response = await asyncio.to_thread(
                    self.openai_client.chat.completions.create,
                    model=self.model,
                    messages=messages,
                    max_tokens=self.max_tokens,
                    temperature=self.temperature,
                )
                analysis = parse_analysis(response.choices[0].message.content if response.choices else None)
                break
            except Exception as e:
                logger.warning(f"Damage analysis attempt {attempt} failed: {e}")
                if attempt < MAX_RETRIES:
                    await asyncio.sleep(self.retry_delay * attempt)
                    continue
                logger.error(f"❌ Damage analysis failed after {MAX_RETRIES} attempts: {e}")
                raise DamageAnalysisError(self.user_message(e)) from e

        logger.info(f"🔍 Damage analysis complete: severity {analysis.severity:.2f}, {len(analysis.issues)} issues")

        if client_id:
            await self.save_report(client_id, f"data:image/jpeg;base64,{encoded}", analysis)
        return analysis

    async def save_report(self, client_id: str, image_url: str, analysis: DamageAnalysis,
                          notes: Optional[str] = None) -> bool:
        """File a report; a failed save is logged and never fails the analysis"""
        if self.store is None:
            return False

        result = await self.store.save_damage_report({
            'client_id': client_id,
            'date': utc_now_iso(),
            'image_url': image_url,
            'severity': analysis.severity,
            'issues': analysis.issues,
            'recommendations': analysis.recommendations,
            'costs': [cost.model_dump() for cost in analysis.costs],
            'notes': notes,
        })
        if not result.get('success'):
            logger.error(f"Failed to save damage report for client {client_id}: {result.get('error')}")
            return False
        return True

    async def history(self, client_id: Optional[str] = None) -> List[DamageReport]:
        if self.store is None:
            return []
        rows = await self.store.list_damage_reports(client_id)
        return [report_from_row(row) for row in rows]
