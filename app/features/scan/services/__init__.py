"""
Scan services, grouped by pipeline stage:

1. scraping/ - page_fetcher.py: rendered (headless Chrome) and plain HTTP fetches
2. discovery/ - page_discovery.py: key paths, sitemaps, deep crawl, public catalog
3. extraction/ - extractor_service.py: HTML -> PageSignals
4. analysis/ - baseline scoring, product and price checks, the AI augmentation pass
5. orchestration/ - scan_orchestrator.py runs the stages under one time budget;
   preview.py redacts a finished result
"""
