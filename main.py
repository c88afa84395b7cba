# -*- coding: utf-8 -*-
"""
Auto Parts Matcher Service

Camera-based part identification:
- The photo is analysed by the vision model (partName, description, keywords)
- The identified part is matched against the MongoDB catalog
- Catalog outages degrade to "no matches" with a warning, never a failed request
"""
import base64
import binascii
import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
import uvicorn

from matcher import ProductMatcher, RetrievalError, get_confidence
from models import ScoredCandidate
from mongodb_client import MongoCatalog, get_catalog_collection, test_connection
from vision_client import MAX_IMAGE_BYTES, VisionError, analyze_image

logger = logging.getLogger(__name__)


# ============================================================================
# CONFIGURATION
# ============================================================================

PUBLIC_BASE_URL = os.environ.get('PUBLIC_BASE_URL', 'http://localhost:5000')
RETRIEVAL_WORKERS = int(os.environ.get('RETRIEVAL_WORKERS', '3'))
LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

MATCH_WARNING = "Error while searching for matching products"


# ============================================================================
# MATCHER SETUP
# ============================================================================

matcher: Optional[ProductMatcher] = None


def build_matcher() -> ProductMatcher:
    """Build the matcher on top of the MongoDB catalog collection."""
    catalog = MongoCatalog(get_catalog_collection())
    return ProductMatcher(
        catalog.search_catalog,
        max_workers=RETRIEVAL_WORKERS,
        image_base_url=PUBLIC_BASE_URL,
    )


def get_matcher() -> ProductMatcher:
    if matcher is None:
        raise HTTPException(status_code=503, detail="Matcher not initialized")
    return matcher


# ============================================================================
# FASTAPI APPLICATION
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the matcher on startup when running via uvicorn."""
    global matcher
    matcher = build_matcher()
    yield


app = FastAPI(
    title="Auto Parts Matcher",
    description="Vision-based part identification matched against the parts catalog",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


class AnalyzeRequest(BaseModel):
    image: Optional[str] = None
    media_type: str = "image/jpeg"


class MatchRequest(BaseModel):
    partName: Optional[str] = None
    description: Optional[str] = None
    keywords: Optional[List[str]] = None


class MatchResponse(BaseModel):
    success: bool = True
    analysis: Optional[Dict[str, Any]] = None
    matchedProducts: List[ScoredCandidate] = []
    confidence: Optional[str] = None
    warning: Optional[str] = None


def run_match(
    current: ProductMatcher,
    part_name: Optional[str],
    description: Optional[str],
    keywords: Any,
    analysis: Optional[Dict[str, Any]] = None
) -> MatchResponse:
    """Match the identified part; a catalog failure yields an empty result with a warning."""
    try:
        matched = current.match_product(part_name, description, keywords)
    except RetrievalError as e:
        logger.error("Error finding matching products: %s", e, exc_info=e.cause)
        return MatchResponse(analysis=analysis, matchedProducts=[], warning=MATCH_WARNING)

    logger.info("Found %d matching products", len(matched))
    return MatchResponse(
        analysis=analysis,
        matchedProducts=matched,
        confidence=get_confidence(matched[0].similarity) if matched else None,
    )


@app.get("/api/stats")
async def stats():
    """Get catalog connection status."""
    conn = test_connection()
    if not conn.get('connected'):
        return {"status": "error", "message": conn.get('error')}
    return {
        "status": "ready",
        "database": conn.get('database'),
        "collection": conn.get('collection'),
        "catalog_count": conn.get('catalog_count'),
        "version": app.version,
    }


@app.post("/api/image/analyze", response_model=MatchResponse)
def analyze(request: AnalyzeRequest, current: ProductMatcher = Depends(get_matcher)):
    """Identify the part in a photo and match it against the catalog."""
    if not request.image:
        raise HTTPException(status_code=400, detail="Image required")

    try:
        image_bytes = base64.b64decode(request.image, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=400, detail="Image must be base64-encoded")

    if len(image_bytes) > MAX_IMAGE_BYTES:
        raise HTTPException(status_code=400, detail="Image too large (max 10MB)")

    logger.info("Analyzing image with vision model...")
    try:
        analysis = analyze_image(request.image, media_type=request.media_type)
    except VisionError as e:
        logger.error("Image analysis failed: %s", e)
        raise HTTPException(status_code=502, detail=str(e))

    logger.info(
        "Image analysis complete: partName=%r confidence=%s",
        analysis.get('partName'), analysis.get('confidence')
    )

    return run_match(
        current,
        analysis.get('partName'),
        analysis.get('description'),
        analysis.get('keywords'),
        analysis=analysis,
    )


@app.post("/api/image/match", response_model=MatchResponse)
def match(request: MatchRequest, current: ProductMatcher = Depends(get_matcher)):
    """Match an already-identified part against the catalog."""
    return run_match(current, request.partName, request.description, request.keywords)


# ============================================================================
# MAIN ENTRY POINT
# ============================================================================

def find_available_port(start_port=8000, max_attempts=10):
    """Find an available port starting from start_port."""
    import socket
    for port in range(start_port, start_port + max_attempts):
        try:
            with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
                s.bind(('127.0.0.1', port))
                return port
        except OSError:
            continue
    return None


def main():
    """Run the matcher service."""
    logging.basicConfig(
        level=LOG_LEVEL,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    print("=" * 60)
    print("Auto Parts Matcher Service")
    print("=" * 60)

    port = find_available_port()
    if port is None:
        print("\nERROR: Could not find an available port (8000-8009).")
        return

    # Test MongoDB connection first
    print("\nTesting MongoDB connection...")
    conn_test = test_connection()
    if conn_test.get('connected'):
        print(f"  Connected to MongoDB: {conn_test.get('database')}.{conn_test.get('collection')}")
        print(f"  Catalog entries: {conn_test.get('catalog_count', 0):,}")
    else:
        print(f"  WARNING: MongoDB connection failed: {conn_test.get('error')}")
        print("  Matching requests will return no products until the catalog is reachable.")

    print(f"\nStarting server at http://127.0.0.1:{port}")
    print("Press Ctrl+C to stop\n")

    uvicorn.run(app, host="127.0.0.1", port=port, log_level="warning")


if __name__ == "__main__":
    main()
