from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware

from cache import TTLCache
from config import Settings, settings
from costs import CostMonitor
from enrichment import PlacesEnricher
from locations import LocationNormalizer
from names import NameParser
from pipeline import SearchFailedError, SearchPipeline
from query_parser import GeminiIntentClient, QueryParser
from ranking import ResultRanker
from schemas import SearchRequest, SearchResponse
from service import NPPESClient, SearchStrategyEngine
from specialities import SpecialtyNormalizer, TaxonomyResolver
from utils import setup_logger

load_dotenv()

logger = setup_logger("api")

app = FastAPI(title="Physician Search API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


def build_pipeline(config: Settings = settings) -> SearchPipeline:
    """Wire one pipeline with its own caches and counters."""
    monitor = CostMonitor()
    specialties = SpecialtyNormalizer()
    locations = LocationNormalizer()

    client: Optional[GeminiIntentClient] = None
    if config.GEMINI_API_KEY:
        client = GeminiIntentClient(config.GEMINI_API_KEY, config.GEMINI_MODEL)
    else:
        logger.warning("GEMINI_API_KEY not set, queries will use the deterministic parser")

    parser = QueryParser(
        specialties,
        locations,
        NameParser(),
        client=client,
        cache=TTLCache(config.QUERY_CACHE_SIZE, config.QUERY_CACHE_TTL),
        monitor=monitor,
        settings=config,
    )
    resolver = TaxonomyResolver(
        specialties,
        cache=TTLCache(config.TAXONOMY_CACHE_SIZE, config.TAXONOMY_CACHE_TTL),
        monitor=monitor,
    )
    engine = SearchStrategyEngine(NPPESClient(config), specialties, locations, settings=config)
    ranker = ResultRanker(specialties, locations, resolver, settings=config)
    enricher = PlacesEnricher(config, monitor=monitor) if config.GOOGLE_PLACES_API_KEY else None
    return SearchPipeline(parser, engine, ranker, enricher=enricher, settings=config)


@app.on_event("startup")
def load_resources():
    """Build the search pipeline once per process."""
    app.state.pipeline = build_pipeline()
    logger.info("Search pipeline ready")


def get_pipeline(request: Request) -> SearchPipeline:
    return request.app.state.pipeline


# ============ API ENDPOINTS ============

@app.post("/search/physicians", response_model=SearchResponse)
async def search_physicians(req: SearchRequest, request: Request):
    """Free-text physician search."""
    if not req.query:
        raise HTTPException(status_code=400, detail="Search query is required")

    pipeline = get_pipeline(request)
    try:
        return await pipeline.search(req.query, radius=req.radius, page=req.page, page_size=req.page_size)
    except SearchFailedError as e:
        logger.error("[SEARCH] Registry unavailable for %r: %s", req.query, e)
        raise HTTPException(
            status_code=503 if e.timeout else 502,
            detail={
                "error": "The provider registry is temporarily unavailable.",
                "details": str(e),
                "suggestions": ["Please try again in a few moments"],
            },
        )


@app.get("/health")
def health_check(request: Request):
    """Health check endpoint."""
    pipeline = get_pipeline(request)
    return {
        "status": "healthy",
        "nlp_enabled": pipeline.parser.client is not None,
        "places_enabled": pipeline.enricher is not None,
    }


@app.get("/stats")
def stats(request: Request):
    return get_pipeline(request).stats()


@app.post("/cache/clear")
def clear_cache(request: Request):
    get_pipeline(request).clear_caches()
    return {"status": "success", "message": "Caches cleared"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
