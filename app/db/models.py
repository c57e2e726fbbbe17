from app.db.base import Base

# Import all models here
from app.models.crawl_frontier import CrawlFrontierItem
from app.models.icd11 import Icd11Chapter, Icd11Diagnosis, Icd11Section, Icd11Subsection

__all__ = ["Base", "CrawlFrontierItem", "Icd11Chapter", "Icd11Section", "Icd11Subsection", "Icd11Diagnosis"]
