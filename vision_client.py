# -*- coding: utf-8 -*-
"""
Vision client

Sends a part photo to the Claude Messages API and returns the identified
part as a dict with partName, description, confidence, keywords, category
and possibleBrands.

Configuration (environment / .env):
    ANTHROPIC_API_KEY   required
    VISION_MODEL        optional, default claude-3-haiku-20240307
"""
import json
import logging
import os
import re
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)


# ============================================================================
# CONFIGURATION
# ============================================================================

ANTHROPIC_API_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"
VISION_MODEL = os.environ.get('VISION_MODEL', 'claude-3-haiku-20240307')
MAX_TOKENS = 1024
REQUEST_TIMEOUT = 60
MAX_IMAGE_BYTES = 10 * 1024 * 1024

ANALYSIS_PROMPT = """
Vous êtes un expert en pièces automobiles. Analysez cette image et retournez UNIQUEMENT au format JSON :

{
  "partName": "nom précis de la pièce en français",
  "description": "description détaillée de la pièce avec caractéristiques visibles",
  "confidence": 0.95,
  "keywords": ["mot-clé1", "mot-clé2"],
  "category": "catégorie de la pièce",
  "possibleBrands": ["marque1", "marque2"]
}

Si ce n'est pas une pièce automobile, retournez:
{
  "partName": "Non identifié",
  "description": "Cette image ne semble pas contenir une pièce automobile",
  "confidence": 0.0,
  "keywords": [],
  "category": "unknown",
  "possibleBrands": []
}"""

REQUIRED_FIELDS = ('partName', 'description', 'confidence')


class VisionError(Exception):
    """The vision model could not be reached or returned an unusable answer."""


# ============================================================================
# RESPONSE PARSING
# ============================================================================

def parse_analysis(text: str) -> Dict[str, Any]:
    """
    Extract the analysis JSON object from the model's text answer.

    Raises:
        VisionError: if no JSON object is found or required fields are missing
    """
    match = re.search(r'\{.*\}', text or '', re.DOTALL)
    if not match:
        raise VisionError("Invalid response format from vision model")

    try:
        analysis = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise VisionError(f"Invalid JSON from vision model: {e}") from e

    if not isinstance(analysis, dict):
        raise VisionError("Invalid response format from vision model")

    if not analysis.get('partName') or not analysis.get('description') or analysis.get('confidence') is None:
        raise VisionError("Incomplete analysis data from vision model")

    analysis.setdefault('keywords', [])
    return analysis


# ============================================================================
# API CLIENT
# ============================================================================

def analyze_image(
    image_b64: str,
    api_key: Optional[str] = None,
    media_type: str = "image/jpeg"
) -> Dict[str, Any]:
    """
    Identify the automotive part shown in a base64-encoded image.

    Args:
        image_b64: Base64-encoded image data
        api_key: API key (defaults to ANTHROPIC_API_KEY)
        media_type: Image MIME type

    Returns:
        Analysis dict (see ANALYSIS_PROMPT)

    Raises:
        VisionError: missing key, HTTP failure or unusable answer
    """
    api_key = api_key or os.environ.get('ANTHROPIC_API_KEY')
    if not api_key:
        raise VisionError("ANTHROPIC_API_KEY not configured")

    headers = {
        "x-api-key": api_key,
        "anthropic-version": ANTHROPIC_VERSION,
        "Content-Type": "application/json"
    }
    payload = {
        "model": VISION_MODEL,
        "max_tokens": MAX_TOKENS,
        "messages": [
            {
                "role": "user",
                "content": [
                    {
                        "type": "image",
                        "source": {"type": "base64", "media_type": media_type, "data": image_b64}
                    },
                    {"type": "text", "text": ANALYSIS_PROMPT}
                ]
            }
        ]
    }

    try:
        response = requests.post(ANTHROPIC_API_URL, json=payload, headers=headers, timeout=REQUEST_TIMEOUT)
        response.raise_for_status()
        data = response.json()
    except requests.exceptions.RequestException as e:
        logger.error("Vision API error: %s", e)
        raise VisionError(f"Vision API error: {e}") from e
    except ValueError as e:
        raise VisionError(f"Invalid JSON body from vision API: {e}") from e

    text = '\n'.join(
        block.get('text', '')
        for block in data.get('content', [])
        if block.get('type') == 'text'
    )
    return parse_analysis(text)
