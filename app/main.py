"""ICD-11 Core FastAPI application.

The crawler (``app.scripts.crawl_icd11``) walks the WHO ICD-11 API and reduces
it to chapters, sections, subsections and diagnoses. This application serves
what the crawler stored in the database, plus the state of the crawl frontier.
"""

from fastapi import FastAPI

from app.clinical.icd11.router import router as icd11_router


def create_app() -> FastAPI:
    app = FastAPI(
        title="ICD-11 Core",
        version="0.1.0",
        description="ICD-11 classification crawled from the WHO API (chapters, sections, diagnoses).",
    )

    app.include_router(icd11_router, prefix="/icd11", tags=["ICD-11"])

    return app


app = create_app()
