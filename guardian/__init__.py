"""
Guardian Scam Triage — Source Package
======================================

This package contains all core modules for the multi-stage scam triage engine:
    - main.py          : FastAPI application entry point and collector ingress
    - auth.py          : API key authentication dependency
    - config.py        : Environment-driven settings
    - normalizer.py    : Training-compatible text canonicalization
    - detector.py      : Stage 1 keyword heuristic scorer (6 tactic groups)
    - classifier.py    : Stage 2 on-device char-CNN inference (numpy)
    - fusion.py        : Score fusion, escalation gate, Stage 3 failure policies
    - cloud.py         : Stage 3 async cloud confirmation client
    - orchestrator.py  : Per-event triage sequencing
    - service.py       : Dedup -> triage -> alert -> notify pipeline
    - memory.py        : Thread-safe bounded deduplication cache
    - store.py         : Thread-safe in-memory alert store
    - notifier.py      : Warning presenters (log / webhook with retry)
    - collectors.py    : Raw-text assembly for notification and image-scan events
    - extractor.py     : URL extraction and snippet redaction
    - models.py        : Dataclasses and pydantic schemas
"""
